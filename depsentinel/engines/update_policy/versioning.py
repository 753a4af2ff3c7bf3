"""Version parsing and ordering per ecosystem.

Three schemes are supported:

* **semver** (npm, cargo, go): ``MAJOR[.MINOR[.PATCH]][-PRERELEASE][+BUILD]``
  with an optional ``v`` prefix. Pre-releases sort below their release;
  numeric identifiers compare numerically and below alphanumeric ones.
  Build metadata does not affect precedence and is only a final lexical
  tie-break.
* **pep440** (pypi): ``N(.N)*[{a|b|rc}N][.postN][.devN][+local]``;
  ``dev < a < b < rc < release < post``.
* **docker**: numeric tag plus optional pre-release letters and a variant
  suffix (``16.2-alpine``). Only tags with the same variant and the same
  number of numeric parts are comparable.

Unparsable versions return ``None`` and are never eligible updates.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Literal

UpdateType = Literal["major", "minor", "patch"]

_SEMVER_RE = re.compile(
    r"^(?P<prefix>v?)(?P<major>0|[1-9]\d*)(?:\.(?P<minor>\d+))?(?:\.(?P<patch>\d+))?"
    r"(?:-(?P<pre>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+(?P<build>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$"
)

_PEP440_RE = re.compile(
    r"^(?P<prefix>v?)(?P<release>\d+(?:\.\d+)*)"
    r"(?:[-_.]?(?P<pre_l>a|alpha|b|beta|c|rc|pre|preview)[-_.]?(?P<pre_n>\d*))?"
    r"(?:(?:[-_.]?(?:post|rev|r)[-_.]?(?P<post_n>\d*))|(?:-(?P<post_implicit>\d+)))?"
    r"(?:[-_.]?(?P<dev>dev)[-_.]?(?P<dev_n>\d*))?"
    r"(?:\+(?P<local>[a-z0-9]+(?:[-_.][a-z0-9]+)*))?$",
    re.IGNORECASE,
)

_DOCKER_RE = re.compile(
    r"^(?P<prefix>v?)(?P<release>\d+(?:\.\d+)*)"
    r"(?P<pre>(?:a|b|alpha|beta|rc|pre)\d*)?"
    r"(?:-(?P<variant>[0-9A-Za-z._-]+))?$",
    re.IGNORECASE,
)

_DOCKER_PRE_VARIANT_RE = re.compile(r"^(alpha|beta|rc|pre|preview|dev)[._-]?\d*$", re.IGNORECASE)

_PEP440_PRE_RANK = {"a": 0, "alpha": 0, "b": 1, "beta": 1, "c": 2, "rc": 2, "pre": 2, "preview": 2}

SCHEMES = {
    "npm": "semver",
    "cargo": "semver",
    "go": "semver",
    "pypi": "pep440",
    "docker": "docker",
}


@dataclass(frozen=True)
class Version:
    """A parsed version. Instances of one ecosystem are totally ordered by ``key``."""

    raw: str
    scheme: str
    release: tuple[int, ...]
    prerelease: bool
    key: tuple[Any, ...] = field(repr=False)
    variant: str = ""
    prefix: str = ""

    @property
    def major(self) -> int:
        return self.release[0]

    @property
    def minor(self) -> int:
        return self.release[1] if len(self.release) > 1 else 0

    @property
    def patch(self) -> int:
        return self.release[2] if len(self.release) > 2 else 0

    def __lt__(self, other: Version) -> bool:
        return self.key < other.key

    def __le__(self, other: Version) -> bool:
        return self.key <= other.key

    def __gt__(self, other: Version) -> bool:
        return self.key > other.key

    def __ge__(self, other: Version) -> bool:
        return self.key >= other.key


def _pad(release: tuple[int, ...]) -> tuple[int, ...]:
    return release + (0,) * (3 - len(release)) if len(release) < 3 else release


def _identifier_key(ident: str) -> tuple[int, int, str]:
    if ident.isdigit():
        return (0, int(ident), "")
    return (1, 0, ident)


def _parse_semver(raw: str) -> Version | None:
    m = _SEMVER_RE.match(raw)
    if not m:
        return None
    release = tuple(int(g) for g in (m.group("major"), m.group("minor"), m.group("patch")) if g)
    pre = m.group("pre")
    pre_key = tuple(_identifier_key(p) for p in pre.split(".")) if pre else ()
    key = (_pad(release), 0 if pre else 1, pre_key, m.group("build") or "")
    return Version(
        raw=raw,
        scheme="semver",
        release=release,
        prerelease=bool(pre),
        key=key,
        prefix=m.group("prefix"),
    )


def _parse_pep440(raw: str) -> Version | None:
    m = _PEP440_RE.match(raw)
    if not m:
        return None
    release = tuple(int(p) for p in m.group("release").split("."))
    pre_l = (m.group("pre_l") or "").lower()
    post = m.group("post_n")
    if post is None:
        post = m.group("post_implicit")
    has_post = post is not None
    dev = m.group("dev")

    if pre_l:
        phase: tuple[int, int] = (_PEP440_PRE_RANK[pre_l], int(m.group("pre_n") or 0))
    elif dev and not has_post:
        phase = (-1, 0)
    else:
        phase = (3, 0)
    post_key = int(post or 0) if has_post else -1
    dev_key = (0, int(m.group("dev_n") or 0)) if dev else (1, 0)
    key = (_pad(release), phase, post_key, dev_key, (m.group("local") or "").lower())
    return Version(
        raw=raw,
        scheme="pep440",
        release=release,
        prerelease=bool(pre_l or dev),
        key=key,
        prefix=m.group("prefix"),
    )


def _parse_docker(raw: str) -> Version | None:
    m = _DOCKER_RE.match(raw)
    if not m:
        return None
    release = tuple(int(p) for p in m.group("release").split("."))
    pre = m.group("pre") or ""
    variant = m.group("variant") or ""
    if variant and _DOCKER_PRE_VARIANT_RE.match(variant):
        pre, variant = variant, ""
    pre_key = _identifier_key(pre.lower()) if pre else ()
    key = (_pad(release), 0 if pre else 1, pre_key)
    return Version(
        raw=raw,
        scheme="docker",
        release=release,
        prerelease=bool(pre),
        key=key,
        variant=variant.lower(),
        prefix=m.group("prefix"),
    )


_PARSERS = {"semver": _parse_semver, "pep440": _parse_pep440, "docker": _parse_docker}


def scheme_for(ecosystem: str) -> str:
    return SCHEMES.get(ecosystem, "semver")


def parse_version(raw: str, ecosystem: str) -> Version | None:
    """Parse *raw* under the ordering scheme of *ecosystem*; None if unparsable."""
    if not raw:
        return None
    return _PARSERS[scheme_for(ecosystem)](raw.strip())


def sort_versions(raws: list[str], ecosystem: str) -> list[str]:
    """Return parsable versions from *raws*, newest first, duplicates removed."""
    parsed: dict[str, Version] = {}
    for raw in raws:
        v = parse_version(raw, ecosystem)
        if v is not None:
            parsed[raw] = v
    return [v.raw for v in sorted(parsed.values(), key=lambda v: v.key, reverse=True)]


def is_compatible(current: Version, candidate: Version) -> bool:
    """Whether *candidate* may replace *current* at all.

    Docker tags must keep their variant and precision (``16-alpine`` never
    becomes ``16.2`` or ``17-bookworm``).
    """
    if current.scheme != candidate.scheme:
        return False
    if current.scheme == "docker":
        return (
            current.variant == candidate.variant
            and len(current.release) == len(candidate.release)
        )
    return True


def update_type(current: Version, target: Version) -> UpdateType:
    """Classify the bump from *current* to *target*."""
    if target.major != current.major:
        return "major"
    if target.minor != current.minor:
        return "minor"
    return "patch"


def render_like(current_text: str, current: Version, target: Version) -> str:
    """Render *target* the way *current_text* was written (keeps ``v`` prefix)."""
    text = target.raw
    if current.prefix and not text.startswith(current.prefix):
        text = current.prefix + text
    elif not current.prefix and target.prefix and current_text[:1].isdigit():
        text = text[len(target.prefix) :]
    return text


# ── constraint expressions ──────────────────────────────────────────────

_COMPARATOR_RE = re.compile(r"^(?P<op><=|>=|<|>|===|==|=|!=|\^|~=|~)?\s*(?P<version>\S+)$")


def _wildcard_bounds(body: str, ecosystem: str) -> tuple[Version, Version] | None:
    parts = body.split(".")
    fixed: list[int] = []
    for part in parts:
        if part in ("*", "x", "X"):
            break
        if not part.isdigit():
            return None
        fixed.append(int(part))
    if len(fixed) == len(parts) or not fixed:
        return None
    lower = ".".join(str(p) for p in fixed + [0] * (3 - len(fixed)))
    upper_parts = fixed[:-1] + [fixed[-1] + 1]
    upper = ".".join(str(p) for p in upper_parts + [0] * (3 - len(upper_parts)))
    lo, hi = parse_version(lower, ecosystem), parse_version(upper, ecosystem)
    if lo is None or hi is None:
        return None
    return lo, hi


def _caret_upper(base: Version) -> tuple[int, ...]:
    release = _pad(base.release)
    if release[0] > 0 or len(base.release) == 1:
        return (release[0] + 1, 0, 0)
    if release[1] > 0 or len(base.release) == 2:
        return (0, release[1] + 1, 0)
    return (0, 0, release[2] + 1)


def _tilde_upper(base: Version) -> tuple[int, ...]:
    if len(base.release) == 1:
        return (base.release[0] + 1, 0, 0)
    return (base.release[0], base.release[1] + 1, 0)


def _compatible_upper(base: Version) -> tuple[int, ...]:
    """PEP 440 ``~=``: drop the last release segment and bump the one before."""
    release = base.release
    if len(release) < 2:
        return (release[0] + 1,)
    head = list(release[:-1])
    head[-1] += 1
    return tuple(head)


def _check_clause(version: Version, clause: str, ecosystem: str) -> bool:
    clause = clause.strip()
    if not clause or clause == "*":
        return True

    wildcard = _wildcard_bounds(clause.lstrip("="), ecosystem)
    if wildcard is not None:
        lo, hi = wildcard
        return lo.key <= version.key and _pad(version.release) < _pad(hi.release)

    m = _COMPARATOR_RE.match(clause)
    if not m:
        raise ValueError(f"invalid version constraint clause {clause!r}")
    op = m.group("op") or "="
    bound = parse_version(m.group("version"), ecosystem)
    if bound is None:
        raise ValueError(f"invalid version in constraint clause {clause!r}")

    if op in ("=", "==", "==="):
        if bound.scheme == "docker":
            return version.key == bound.key
        # build metadata / local labels do not take part in equality
        return version.key[:-1] == bound.key[:-1]
    if op == "!=":
        return version.key != bound.key
    if op == "<":
        return version.key < bound.key
    if op == "<=":
        return version.key <= bound.key
    if op == ">":
        return version.key > bound.key
    if op == ">=":
        return version.key >= bound.key
    if op == "^":
        return version.key >= bound.key and _pad(version.release) < _caret_upper(bound)
    if op == "~":
        return version.key >= bound.key and _pad(version.release) < _tilde_upper(bound)
    if op == "~=":
        upper = _compatible_upper(bound)
        return version.key >= bound.key and version.release[: len(upper)] < upper
    raise ValueError(f"unsupported operator {op!r}")


def satisfies(version: Version, expression: str, ecosystem: str) -> bool:
    """Check *version* against a constraint expression.

    Grammar: alternatives separated by ``||``; each alternative is a list of
    clauses separated by ``,`` or whitespace, all of which must hold. A
    clause is a comparator (``<``, ``<=``, ``>``, ``>=``, ``=``, ``==``,
    ``!=``, ``^``, ``~``, ``~=``) with a version, a bare version, or a
    wildcard (``1.x``, ``1.2.*``). An expression wrapped in slashes
    (``/^1\\./``) is a regular expression on the raw version string.

    Raises ``ValueError`` for malformed expressions.
    """
    expression = expression.strip()
    if len(expression) >= 2 and expression.startswith("/") and expression.endswith("/"):
        return re.search(expression[1:-1], version.raw) is not None

    for alternative in expression.split("||"):
        # Join "op version" pairs written with a space ("< 2.0") before splitting.
        normalized = re.sub(r"(<=|>=|<|>|===|==|!=|~=|=|\^|~)\s+", r"\1", alternative)
        clauses = [c for c in re.split(r"[,\s]+", normalized) if c]
        if all(_check_clause(version, clause, ecosystem) for clause in clauses):
            return True
    return False

