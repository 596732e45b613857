import shlex
from typing import Optional
from ffpack.config.models import AppConfig, EncodingProfile, IMAGE_PROFILE, VIDEO_PROFILE

BUILTIN_PROFILES = {
    IMAGE_PROFILE.name: IMAGE_PROFILE,
    VIDEO_PROFILE.name: VIDEO_PROFILE,
}


def parse_custom_args(custom_args: str) -> list:
    """Splits a user-supplied argument string the way a POSIX shell would."""
    args = shlex.split(custom_args)
    if not args:
        raise ValueError("Custom encoder arguments are empty.")
    return args


def resolve_profile(config: AppConfig, custom_args: Optional[str] = None) -> EncodingProfile:
    """Picks the profile for the configured mode and applies overrides.

    Precedence: built-in profile < `profiles:` entry in YAML < custom args / extensions.
    """
    mode = config.general.mode
    profile = config.profiles.get(mode) or BUILTIN_PROFILES[mode]

    updates = {}
    args = custom_args if custom_args is not None else config.general.custom_args
    if args is not None:
        updates["name"] = "custom"
        updates["codec_args"] = parse_custom_args(args)
    if config.general.extensions is not None:
        updates["input_extensions"] = list(config.general.extensions)

    if updates:
        profile = profile.model_copy(update=updates)
    return profile
