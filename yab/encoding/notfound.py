"""Error raised when a requested service or method cannot be found."""

from __future__ import annotations

import json
from collections.abc import Iterable


def _quote(value: str) -> str:
    return json.dumps(value, ensure_ascii=False)


class NotFound(LookupError):
    """A symbol was not found (or not given), with a list of the ones that exist."""

    def __init__(
        self,
        encoding: str,
        search_type: str,
        search: str = "",
        example: str = "",
        look_in: str = "",
        available: Iterable[str] = (),
    ) -> None:
        self.encoding = encoding
        self.search_type = search_type
        self.search = search
        self.example = example
        self.look_in = look_in
        self.available = list(available)
        super().__init__(str(self))

    @property
    def _qualified_type(self) -> str:
        return f"{self.encoding} {self.search_type}"

    def __str__(self) -> str:
        if not self.search:
            msg = f"no {self._qualified_type} specified, specify {self.example}"
        elif not self.look_in:
            msg = f"could not find {self._qualified_type} {_quote(self.search)}"
        else:
            msg = (
                f"{self.encoding} {self.look_in} does not contain "
                f"{self.search_type} {_quote(self.search)}"
            )
        msg += ". "

        look_in_prefix = f" in {self.look_in}" if self.look_in else ""

        if not self.available:
            return msg + f"No known {self._qualified_type}s{look_in_prefix} to list"

        suffix = self.search_type + ("s" if len(self.available) > 1 else "")
        listing = "\n\t".join(sorted(self.available))
        return msg + f"Available {self.encoding} {suffix}{look_in_prefix}:\n\t{listing}"

    def __repr__(self) -> str:
        return f"{type(self).__name__}({str(self)!r})"