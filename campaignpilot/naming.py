"""Campaign identifier derivation and validation.

Every advertising platform constrains how a campaign name may look once it is
stored on the platform side. This module turns a human-entered campaign name
into a platform-compliant identifier and checks any identifier against the same
rules.

Two entry points, deliberately independent of each other:
- derive_identifier(name, rule): case -> separator -> strip forbidden -> truncate
- validate_identifier(identifier, rule): length -> forbidden -> allowed

Validation never calls derivation, so validating an identifier typed in by hand
behaves exactly like validating a generated one.

Both functions are pure and never raise: a rule with every field absent is the
identity transform and validates everything.

Character sets are literal. "a-z" means the three characters 'a', '-' and 'z',
not a range.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, List, Optional, Pattern, Tuple

CASE_TRANSFORMS: Tuple[str, ...] = ("none", "lowercase", "uppercase")

_SEPARATOR_CHARS: Dict[str, Optional[str]] = {
    "none": None,
    "hyphen": "-",
    "underscore": "_",
}
SEPARATORS: Tuple[str, ...] = tuple(_SEPARATOR_CHARS)

_WHITESPACE_RUN_RE = re.compile(r"\s+")

# User-facing messages (stable: the UI and tests match on them).
MSG_TOO_LONG = "Campaign ID exceeds maximum length of {max_length} characters"
MSG_FORBIDDEN = "Campaign ID contains forbidden characters"
MSG_UNSUPPORTED = "Campaign ID contains characters that may not be supported"


def normalize_case_transform(value: Optional[str]) -> Optional[str]:
    """Normalize a case transform; None/"" mean "not enforced"."""

    if value is None:
        return None
    v = str(value).strip().lower()
    if not v:
        return None
    if v in ("none", "preserve", "keep", "as-is"):
        return "none"
    if v in ("lowercase", "lower"):
        return "lowercase"
    if v in ("uppercase", "upper"):
        return "uppercase"
    raise ValueError(f"Unsupported case transform {value!r}. Allowed: {list(CASE_TRANSFORMS)}")


def normalize_separator(value: Optional[str]) -> Optional[str]:
    """Normalize a separator policy; None/"" mean "not enforced"."""

    if value is None:
        return None
    v = str(value).strip().lower()
    if not v:
        return None
    if v in ("none", "space", "keep"):
        return "none"
    if v in ("hyphen", "hyphens", "dash", "dashes", "-"):
        return "hyphen"
    if v in ("underscore", "underscores", "_"):
        return "underscore"
    raise ValueError(f"Unsupported separator {value!r}. Allowed: {list(SEPARATORS)}")


@dataclass(frozen=True)
class NamingRule:
    """Naming constraints for one platform.

    Every field is optional; None means the dimension is not enforced.
    """

    case_transform: Optional[str] = None
    separator: Optional[str] = None
    forbidden_characters: Optional[str] = None
    allowed_characters: Optional[str] = None
    max_length: Optional[int] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "case_transform", normalize_case_transform(self.case_transform))
        object.__setattr__(self, "separator", normalize_separator(self.separator))
        object.__setattr__(self, "forbidden_characters", self.forbidden_characters or None)
        object.__setattr__(self, "allowed_characters", self.allowed_characters or None)
        if self.max_length is not None:
            if isinstance(self.max_length, bool) or int(self.max_length) <= 0:
                raise ValueError(f"max_length must be a positive integer. Got: {self.max_length!r}")
            object.__setattr__(self, "max_length", int(self.max_length))

    @staticmethod
    def from_convention(
        naming_convention: Optional[str],
        *,
        max_length: Optional[int] = None,
        allowed_characters: Optional[str] = None,
        forbidden_characters: Optional[str] = None,
    ) -> "NamingRule":
        """Build a rule from a platform row.

        Platforms describe case + separator in free text, e.g.
        "lowercase with hyphens" or "UPPERCASE_WITH_UNDERSCORES". Matching is by
        keyword; when both separators are mentioned, hyphens win.
        """

        text = (naming_convention or "").lower()

        case_transform: Optional[str] = None
        if "lowercase" in text:
            case_transform = "lowercase"
        elif "uppercase" in text:
            case_transform = "uppercase"

        separator: Optional[str] = None
        if "hyphen" in text:
            separator = "hyphen"
        elif "underscore" in text:
            separator = "underscore"

        return NamingRule(
            case_transform=case_transform,
            separator=separator,
            forbidden_characters=forbidden_characters or None,
            allowed_characters=allowed_characters or None,
            # 0 / negative lengths in reference data mean "no limit"
            max_length=int(max_length) if max_length and int(max_length) > 0 else None,
        )

    def describe(self) -> List[str]:
        """Human-readable summary of the enforced dimensions."""

        parts: List[str] = []
        if self.case_transform and self.case_transform != "none":
            parts.append(self.case_transform)
        if self.separator and self.separator != "none":
            parts.append(f"{self.separator} separated")
        if self.max_length is not None:
            parts.append(f"max {self.max_length} chars")
        if self.forbidden_characters:
            parts.append(f"no {self.forbidden_characters!r}")
        if self.allowed_characters:
            parts.append(f"only {self.allowed_characters!r}")
        return parts


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class GeneratedIdentifier:
    original_name: str
    generated_id: str
    platform: str
    validation: ValidationResult


@lru_cache(maxsize=256)
def _char_class(chars: str) -> Pattern[str]:
    # re.escape keeps ']', '\\', '^' and '-' literal inside the class.
    return re.compile(f"[{re.escape(chars)}]")


@lru_cache(maxsize=256)
def _only_chars(chars: str) -> Pattern[str]:
    return re.compile(f"[{re.escape(chars)}]*")


def derive_identifier(name: str, rule: NamingRule) -> str:
    """Transform a campaign name into a platform identifier.

    Order matters: each step works on the output of the previous one.
    """

    out = name or ""

    if rule.case_transform == "lowercase":
        out = out.lower()
    elif rule.case_transform == "uppercase":
        out = out.upper()

    sep = _SEPARATOR_CHARS.get(rule.separator or "none")
    if sep:
        out = _WHITESPACE_RUN_RE.sub(sep, out)

    if rule.forbidden_characters:
        out = _char_class(rule.forbidden_characters).sub("", out)

    if rule.max_length is not None:
        out = out[: rule.max_length]

    return out


def validate_identifier(identifier: str, rule: NamingRule) -> ValidationResult:
    """Check an identifier against a rule.

    Errors (length, forbidden) make it invalid; characters outside the allowed
    set only produce a warning.
    """

    errors: List[str] = []
    warnings: List[str] = []
    value = identifier or ""

    if rule.max_length is not None and len(value) > rule.max_length:
        errors.append(MSG_TOO_LONG.format(max_length=rule.max_length))

    if rule.forbidden_characters and _char_class(rule.forbidden_characters).search(value):
        errors.append(MSG_FORBIDDEN)

    if rule.allowed_characters and not _only_chars(rule.allowed_characters).fullmatch(value):
        warnings.append(MSG_UNSUPPORTED)

    return ValidationResult(is_valid=(len(errors) == 0), errors=errors, warnings=warnings)


def generate_identifier(
    name: str, rule: NamingRule, *, platform: str = "", transform: bool = True
) -> GeneratedIdentifier:
    """Derive an identifier and validate the derived value.

    With transform=False the name is used verbatim and only validated; that is
    how platforms without a naming convention behave.
    """

    generated = derive_identifier(name, rule) if transform else (name or "")
    return GeneratedIdentifier(
        original_name=name,
        generated_id=generated,
        platform=platform,
        validation=validate_identifier(generated, rule),
    )
