"""Domain set helpers."""

from __future__ import annotations

import re
from collections.abc import Iterable

_HOST_CLAUSE_RE = re.compile(r"Host\(([^)]*)\)")
_LITERAL_RE = re.compile(r"^\s*(?:`([^`]*)`|\"([^\"]*)\")\s*$")


def sanitize_domains(domains: Iterable[str]) -> list[str]:
    """Lowercase, deduplicate and sort domains.

    Empty entries are dropped. The result is a fixed point of the function.

    Example:
        >>> sanitize_domains(["FOO.com", "foo.com", "bar.com"])
        ['bar.com', 'foo.com']
    """
    return sorted({d.strip().lower() for d in domains if d and d.strip()})


def parse_host_rule_domains(rule: str) -> list[str]:
    """Extract the domains of every ``Host(...)`` clause of a route match rule.

    Each clause holds comma-separated literals delimited by backticks or double
    quotes. A clause with malformed quoting contributes no domains.

    Example:
        >>> parse_host_rule_domains("Host(`a.com`,`b.com`) || Host(`c.com`)")
        ['a.com', 'b.com', 'c.com']
    """
    domains: list[str] = []
    for clause in _HOST_CLAUSE_RE.findall(rule):
        literals = []
        for part in clause.split(","):
            match = _LITERAL_RE.match(part)
            if match is None:
                literals = []
                break
            literals.append(match.group(1) if match.group(1) is not None else match.group(2))
        domains.extend(d.strip() for d in literals if d.strip())
    return domains
