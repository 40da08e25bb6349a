"""
Translator configuration and named target profiles.

A profile bundles the settings that belong to one known program image.
Nothing in a profile is applied unless the caller selects it by name:
the default profile has no patches and no address ceiling.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Dict, Optional

__all__ = ['TARGET_PROFILES', 'INVALID_OPERAND_POLICIES', 'TranslatorConfig']


# reject: stop translation at the first operand word >= 32776
# fault:  translate anyway; the offending block raises when executed
INVALID_OPERAND_POLICIES = ('reject', 'fault')


TARGET_PROFILES = {
    "generic": {
        "limit": None,
        "patches": {},
        "memory_image": "memory.bin",
        "description": "Any image; decode every word, no patches",
    },
    "challenge": {
        # Code ends at 6068; the rest of the image is data.
        "limit": 6068,
        # Skips the slow self-validation routine of the challenge binary.
        "patches": {937: 21, 938: 7},
        "memory_image": "memory.bin",
        "description": "Challenge binary: 6068-word code ceiling, self-check bypass patch",
    },
}


@dataclass
class TranslatorConfig:
    """Settings for one translation.

    patches          address -> replacement word, applied before decoding
    limit            address ceiling; no instruction starts at or after it
    invalid_operands one of INVALID_OPERAND_POLICIES
    memory_image     file the emitted program loads for rmem/wmem
    name             program name recorded in the emitted header
    """
    patches: Dict[int, int] = field(default_factory=dict)
    limit: Optional[int] = None
    invalid_operands: str = "reject"
    memory_image: str = "memory.bin"
    name: str = "program"

    @classmethod
    def from_profile(cls, profile: str = "generic", **overrides) -> "TranslatorConfig":
        """Build a config from a named profile, with keyword overrides.

        Override values of None are ignored; patches are merged on top of
        the profile's own.
        """
        if profile not in TARGET_PROFILES:
            raise KeyError(f"unknown profile '{profile}' "
                           f"(expected one of {', '.join(TARGET_PROFILES)})")
        base = TARGET_PROFILES[profile]
        cfg = cls(patches=dict(base["patches"]), limit=base["limit"],
                  memory_image=base["memory_image"])
        extra_patches = overrides.pop("patches", None)
        if extra_patches:
            cfg.patches.update(extra_patches)
        return replace(cfg, **{k: v for k, v in overrides.items() if v is not None})
