"""
Infringement profile classification.

Maps a raw infringement record onto one of a fixed set of legal theories. The
selected profile drives the legal-basis sentence used in the notice body, so
classification is a pure, deterministic function of its inputs.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel

from takedown_core.models import InfringementEvidence, InfringementProfile

DEFAULT_PROFILE: InfringementProfile = "full_reupload"


class ProfileInfo(BaseModel):
    id: InfringementProfile
    label: str
    legal_basis: str
    description: str


PROFILES: Dict[str, ProfileInfo] = {
    "full_reupload": ProfileInfo(
        id="full_reupload",
        label="Full Reupload / Mirror",
        legal_basis=(
            "reproduction, distribution, and public display of the copyrighted work in its "
            "entirety, in violation of 17 U.S.C. §106(1), §106(3), and §106(5)"
        ),
        description="The entire product has been copied and made available without authorization.",
    ),
    "copied_text": ProfileInfo(
        id="copied_text",
        label="Copied Text / Content Scrape",
        legal_basis=(
            "reproduction and public display of substantial textual content from the copyrighted "
            "work, in violation of 17 U.S.C. §106(1) and §106(5)"
        ),
        description="Substantial portions of the written content have been copied or scraped.",
    ),
    "copied_images": ProfileInfo(
        id="copied_images",
        label="Copied Images / Visual Assets",
        legal_basis=(
            "reproduction and public display of copyrighted visual assets, in violation of "
            "17 U.S.C. §106(1) and §106(5)"
        ),
        description="Images, screenshots, or other visual assets have been copied without authorization.",
    ),
    "leaked_download": ProfileInfo(
        id="leaked_download",
        label="Leaked Download / File Distribution",
        legal_basis=(
            "unauthorized reproduction and distribution of the copyrighted work via file sharing, "
            "in violation of 17 U.S.C. §106(1) and §106(3)"
        ),
        description="The product files are being distributed for download without authorization.",
    ),
    "unauthorized_resale": ProfileInfo(
        id="unauthorized_resale",
        label="Unauthorized Resale",
        legal_basis=(
            "unauthorized reproduction, distribution, and commercial exploitation of the copyrighted "
            "work, in violation of 17 U.S.C. §106(1), §106(3), and §106(5)"
        ),
        description="The product is being sold by a third party who has no right to resell it.",
    ),
    "partial_copy": ProfileInfo(
        id="partial_copy",
        label="Partial Copy / Excerpt",
        legal_basis=(
            "reproduction of substantial portions of the copyrighted work, in violation of "
            "17 U.S.C. §106(1)"
        ),
        description="Significant excerpts of the product have been reproduced without authorization.",
    ),
}

# Infringement-type tag -> profile (most specific signal)
TYPE_PROFILE_MAP: Dict[str, InfringementProfile] = {
    "channel": "leaked_download",
    "group": "leaked_download",
    "bot": "leaked_download",
    "direct_download": "leaked_download",
    "torrent": "leaked_download",
    "server": "leaked_download",
    "indexed_page": "full_reupload",
    "post": "copied_text",
}

PLATFORM_PROFILE_MAP: Dict[str, InfringementProfile] = {
    "telegram": "leaked_download",
    "discord": "leaked_download",
    "torrent": "leaked_download",
    "cyberlocker": "leaked_download",
    "google": "full_reupload",
    "forum": "copied_text",
    "social": "copied_text",
}

FILE_HOST_DOMAINS = ("mega.nz", "mediafire", "drive.google", "dropbox", "anonfiles", "gofile")
STOREFRONT_DOMAINS = ("gumroad", "shopify", "etsy", "sellfy", "payhip")


def _profile_from_evidence(evidence: Optional[InfringementEvidence]) -> Optional[InfringementProfile]:
    if evidence is None:
        return None
    if evidence.has_price or evidence.is_marketplace:
        return "unauthorized_resale"
    if evidence.image_matches and not evidence.matched_excerpts:
        return "copied_images"
    return None


def _profile_from_url(source_url: Optional[str]) -> Optional[InfringementProfile]:
    if not source_url:
        return None
    url = source_url.lower()
    if any(domain in url for domain in FILE_HOST_DOMAINS):
        return "leaked_download"
    if any(domain in url for domain in STOREFRONT_DOMAINS):
        return "unauthorized_resale"
    return None


def classify_infringement(
    platform: Optional[str] = None,
    infringement_type: Optional[str] = None,
    evidence: Optional[InfringementEvidence] = None,
    source_url: Optional[str] = None,
) -> InfringementProfile:
    """
    Pick the legal theory that best describes an infringement.

    Signals are tried from most to least specific: infringement type, evidence
    flags, URL heuristics, then the platform tag. Falls back to
    ``full_reupload``, the broadest claim.

    Args:
        platform: Platform tag from the scan engine (e.g. "telegram")
        infringement_type: Infringement-type tag (e.g. "channel", "post")
        evidence: Evidence blob attached to the infringement
        source_url: The infringing URL

    Returns:
        InfringementProfile: one of the six profile tags
    """
    if infringement_type and infringement_type.lower() in TYPE_PROFILE_MAP:
        return TYPE_PROFILE_MAP[infringement_type.lower()]

    from_evidence = _profile_from_evidence(evidence)
    if from_evidence:
        return from_evidence

    from_url = _profile_from_url(source_url)
    if from_url:
        return from_url

    if platform and platform.lower() in PLATFORM_PROFILE_MAP:
        return PLATFORM_PROFILE_MAP[platform.lower()]

    return DEFAULT_PROFILE


def get_profile_info(profile: str) -> ProfileInfo:
    """Catalogue entry for a profile tag; unknown tags resolve to the default profile."""
    return PROFILES.get(profile, PROFILES[DEFAULT_PROFILE])


def get_all_profiles() -> List[ProfileInfo]:
    return list(PROFILES.values())
