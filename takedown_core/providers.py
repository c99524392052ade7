"""
DMCA provider directory and enforcement target resolution.

The directory is a static, read-only table of DMCA agents for platforms, file
hosts, hosting companies and registrars. ``resolve_all_targets`` turns an
infringing URL plus whatever infrastructure data is known into an ordered
escalation ladder: platform -> hosting -> registrar -> search engine.
"""

import logging
import re
from types import MappingProxyType
from typing import List, Mapping, Optional, Pattern, Set, Tuple
from urllib.parse import urlparse

from takedown_core.models import EnforcementTarget, ProviderInfo

logger = logging.getLogger(__name__)

GOOGLE_TROUBLESHOOTER_URL = "https://support.google.com/legal/troubleshooter/1114905"

PLATFORM_DEADLINE_DAYS = 7
ESCALATION_DEADLINE_DAYS = 14
DEINDEX_DEADLINE_DAYS = 0

UNVERIFIED_NOTE = " Contact details are not verified from an official source; confirm before sending."


def _provider(name, email, form_url, agent_name, requirements, prefers_web_form, verified) -> ProviderInfo:
    return ProviderInfo(
        name=name,
        dmca_email=email,
        dmca_form_url=form_url,
        agent_name=agent_name,
        requirements=requirements,
        prefers_web_form=prefers_web_form,
        verified=verified,
    )


PROVIDERS: Mapping[str, ProviderInfo] = MappingProxyType({
    # Video and search
    "youtube": _provider(
        "YouTube", "copyright@youtube.com", "https://www.youtube.com/copyright_complaint_page",
        "YouTube Copyright Team",
        "Include video URLs with timestamps for specific content. Web form submission is strongly preferred.",
        True, True,
    ),
    "google": _provider(
        "Google", None, GOOGLE_TROUBLESHOOTER_URL,
        "Google DMCA Agent",
        "Google only accepts DMCA submissions via their Legal Troubleshooter web form. "
        "Include specific URLs to be removed from search results.",
        True, True,
    ),
    # Messaging and community
    "telegram": _provider(
        "Telegram", "dmca@telegram.org", "https://telegram.org/dmca",
        "Telegram DMCA Agent",
        "Email dmca@telegram.org. Include the channel/group username, invite link, or specific message links. "
        "Telegram is not US-based, so enforcement may differ from US platforms.",
        False, True,
    ),
    "discord": _provider(
        "Discord", "copyright@discord.com", "https://dis.gd/copyright",
        "Discord Trust & Safety",
        "Use the web form or email copyright@discord.com. Include server ID, channel ID, and specific message links.",
        True, True,
    ),
    # File hosts
    "mega": _provider(
        "MEGA", "copyright@mega.nz", "https://mega.nz/takedown",
        "MEGA Copyright Team",
        "Use the web form (preferred). Include exact file/folder links.",
        True, True,
    ),
    "mediafire": _provider(
        "MediaFire", "dmca@mediafire.com", "https://www.mediafire.com/policies/dmca.php",
        "MediaFire Copyright Agent",
        "Email dmca@mediafire.com. Include direct file download links.",
        False, False,
    ),
    "dropbox": _provider(
        "Dropbox", "copyright@dropbox.com", "https://www.dropbox.com/copyright/dmca",
        "Dropbox Copyright Agent",
        "Use web form or email copyright@dropbox.com. Include shared file/folder URLs.",
        True, False,
    ),
    "drive.google": _provider(
        "Google Drive", None, GOOGLE_TROUBLESHOOTER_URL,
        "Google DMCA Agent",
        "Google only accepts DMCA submissions via their Legal Troubleshooter web form. "
        "Include shared drive file/folder links.",
        True, True,
    ),
    # Hosting, CDN and registrars
    "cloudflare": _provider(
        "Cloudflare", "dmca@cloudflare.com", "https://abuse.cloudflare.com",
        "Cloudflare Trust & Safety",
        "Cloudflare is a CDN; the notice will be forwarded to the actual hosting provider. "
        "Use the abuse form (preferred).",
        True, True,
    ),
    "namecheap": _provider(
        "Namecheap", "abuse@namecheap.com", "https://www.namecheap.com/support/abuse-form/",
        "Namecheap Abuse Team",
        "Include domain name and specific infringing URLs. As a registrar, they may forward to the actual host.",
        True, False,
    ),
    "godaddy": _provider(
        "GoDaddy", "copyright@godaddy.com", "https://supportcenter.godaddy.com/AbuseReport",
        "GoDaddy Abuse Team",
        "Include domain name and specific infringing URLs.",
        True, False,
    ),
    "digitalocean": _provider(
        "DigitalOcean", "abuse@digitalocean.com", None,
        "DigitalOcean Abuse Team",
        "Include IP address and specific infringing URLs.",
        False, False,
    ),
    "hostinger": _provider(
        "Hostinger", "abuse@hostinger.com", None,
        "Hostinger Abuse Team",
        "Include domain name and specific infringing URLs.",
        False, False,
    ),
    # Social
    "tiktok": _provider(
        "TikTok", "copyright@tiktok.com", "https://www.tiktok.com/legal/report/Copyright",
        "TikTok Copyright Team",
        "Use the web form (preferred). Include specific video URLs.",
        True, True,
    ),
    "reddit": _provider(
        "Reddit", "copyright@reddit.com", "https://reddit.zendesk.com/hc/en-us/requests/new?ticket_form_id=106573",
        "Reddit Copyright Team",
        "Email copyright@reddit.com or use the web form. Include specific post/comment URLs.",
        False, True,
    ),
    "facebook": _provider(
        "Facebook / Meta", "ip@fb.com", "https://www.facebook.com/help/contact/634636770043571",
        "Meta IP Operations",
        "Use the web form (strongly preferred). Include specific post/page URLs.",
        True, True,
    ),
    "instagram": _provider(
        "Instagram", "ip@instagram.com", "https://help.instagram.com/contact/552695131608132",
        "Meta IP Operations",
        "Use the web form. Include specific post URLs. Shares Meta IP infrastructure.",
        True, True,
    ),
    "twitter": _provider(
        "X (Twitter)", "copyright@x.com", "https://help.x.com/en/forms/ipi/dmca",
        "X Copyright Team",
        "Use the web form. Include specific tweet/post URLs.",
        True, True,
    ),
    # Marketplaces
    "gumroad": _provider(
        "Gumroad", "dmca@gumroad.com", None,
        "Gumroad Trust & Safety",
        "Email dmca@gumroad.com. Include the product listing URL and proof of original ownership.",
        False, False,
    ),
    "etsy": _provider(
        "Etsy", "legal@etsy.com", "https://www.etsy.com/legal/ip/report",
        "Etsy IP Team",
        "Use the web form (preferred). Include specific listing URLs.",
        True, True,
    ),
    "amazon": _provider(
        "Amazon", "copyright@amazon.com", "https://www.amazon.com/report/infringement",
        "Amazon Brand Registry",
        "Use the Report Infringement form (preferred). Include product listing URLs.",
        True, True,
    ),
    "ebay": _provider(
        "eBay", None,
        "https://www.ebay.com/help/policies/listing-policies/creating-managing-listings/"
        "vero-rights-owner-program?id=4349",
        "eBay VeRO Program",
        "eBay requires enrollment in their VeRO (Verified Rights Owner) Program before submitting takedowns. "
        "No one-off DMCA email.",
        True, True,
    ),
    # Trading
    "tradingview": _provider(
        "TradingView", None, "https://www.tradingview.com/support/",
        "TradingView Support",
        "TradingView has no public DMCA email. Submit a support ticket through their Help Center. "
        "Include the script/indicator URL and proof of original ownership.",
        True, True,
    ),
    "mql5": _provider(
        "MQL5 / MetaTrader Market", None, "https://www.mql5.com/en/about/terms",
        "MQL5 Support",
        "Contact MQL5 through their support system. Include the product listing URL on MQL5 marketplace.",
        True, False,
    ),
    # Course platforms
    "udemy": _provider(
        "Udemy", "piracy@udemy.com", "https://www.udemy.com/terms/ip/",
        "Udemy Trust & Safety",
        "Email piracy@udemy.com or use the IP policy page. Include the course URL and proof of original content.",
        False, False,
    ),
    "teachable": _provider(
        "Teachable", "dmca@teachable.com", None,
        "Teachable Copyright Team",
        "Email dmca@teachable.com. Include the course/school URL and proof of original ownership.",
        False, False,
    ),
    "thinkific": _provider(
        "Thinkific", "dmca@thinkific.com", None,
        "Thinkific Trust & Safety",
        "Email dmca@thinkific.com. Include the course URL and proof of original ownership.",
        False, False,
    ),
    "skillshare": _provider(
        "Skillshare", None, "https://www.skillshare.com/en/terms",
        "Skillshare Trust & Safety",
        "Check their Terms of Service for current DMCA process. Include the class URL.",
        True, False,
    ),
    # Documents and code
    "scribd": _provider(
        "Scribd", "copyright@scribd.com",
        "https://support.scribd.com/hc/en-us/articles/210129366-Filing-a-copyright-claim",
        "Scribd Copyright Agent",
        "Email copyright@scribd.com. Include the document URL and proof of original ownership.",
        False, False,
    ),
    "github": _provider(
        "GitHub", "copyright@github.com", "https://support.github.com/contact/dmca-takedown",
        "GitHub DMCA Agent",
        "Use the DMCA Takedown web form (preferred). GitHub publishes all DMCA notices publicly in their "
        "github/dmca repository. Include repo/file URLs.",
        True, True,
    ),
    "pastebin": _provider(
        "Pastebin", "admin@pastebin.com", "https://pastebin.com/report",
        "Pastebin Admin",
        "Email admin@pastebin.com or use the report page. Include the paste URL.",
        False, False,
    ),
    "patreon": _provider(
        "Patreon", "copyright@patreon.com", None,
        "Patreon Copyright Agent",
        "Email copyright@patreon.com. Include the creator page URL and proof of ownership.",
        False, False,
    ),
})


def _host_pattern(*domains: str) -> Pattern[str]:
    alternatives = "|".join(re.escape(d) for d in domains)
    return re.compile(rf"(^|\.)({alternatives})$", re.IGNORECASE)


# Evaluated in order; the google.* catch-all must stay last.
URL_PATTERNS: Tuple[Tuple[Pattern[str], str], ...] = (
    (_host_pattern("youtube.com", "youtu.be"), "youtube"),
    (_host_pattern("drive.google.com"), "drive.google"),
    (_host_pattern("t.me", "telegram.org", "telegram.me"), "telegram"),
    (_host_pattern("discord.com", "discord.gg"), "discord"),
    (_host_pattern("mega.nz"), "mega"),
    (_host_pattern("mediafire.com"), "mediafire"),
    (_host_pattern("dropbox.com"), "dropbox"),
    (_host_pattern("tiktok.com"), "tiktok"),
    (_host_pattern("reddit.com"), "reddit"),
    (_host_pattern("facebook.com", "fb.com"), "facebook"),
    (_host_pattern("instagram.com"), "instagram"),
    (_host_pattern("twitter.com", "x.com"), "twitter"),
    (_host_pattern("gumroad.com"), "gumroad"),
    (_host_pattern("etsy.com"), "etsy"),
    (_host_pattern("tradingview.com"), "tradingview"),
    (_host_pattern("mql5.com"), "mql5"),
    (_host_pattern("udemy.com"), "udemy"),
    (_host_pattern("teachable.com"), "teachable"),
    (_host_pattern("thinkific.com"), "thinkific"),
    (_host_pattern("skillshare.com"), "skillshare"),
    (_host_pattern("scribd.com"), "scribd"),
    (_host_pattern("github.com"), "github"),
    (_host_pattern("pastebin.com"), "pastebin"),
    (_host_pattern("amazon.com"), "amazon"),
    (_host_pattern("ebay.com"), "ebay"),
    (_host_pattern("patreon.com"), "patreon"),
    (re.compile(r"(^|\.)google\.", re.IGNORECASE), "google"),
)

# Reachable only through their own URLs; "Google LLC" in an IP lookup is
# infrastructure, not a search-deindex or Drive target
URL_ONLY_PROVIDERS = frozenset({"google", "drive.google"})

# Word-boundary matchers so "mega" does not fire on "omegahost"
_NAME_PATTERNS: Tuple[Tuple[Pattern[str], str], ...] = tuple(
    (re.compile(rf"(?<![a-z0-9]){re.escape(key)}(?![a-z0-9])"), key)
    for key in PROVIDERS
    if key not in URL_ONLY_PROVIDERS
)


def extract_domain(url: Optional[str]) -> str:
    """Bare hostname of a URL without ``www.``; empty string when unparseable."""
    if not url:
        return ""
    candidate = url.strip()
    if "://" not in candidate:
        candidate = f"http://{candidate}"
    try:
        hostname = urlparse(candidate).hostname or ""
    except ValueError:
        return ""
    return re.sub(r"^www\.", "", hostname.lower())


def get_provider_by_id(provider_id: str) -> Optional[ProviderInfo]:
    return PROVIDERS.get(provider_id.lower()) if provider_id else None


def match_url(url: Optional[str]) -> Optional[str]:
    """Directory key of the first URL pattern matching the URL's host, if any."""
    host = extract_domain(url)
    if not host:
        return None
    for pattern, provider_id in URL_PATTERNS:
        if pattern.search(host):
            return provider_id
    return None


def _match_name(value: Optional[str], exclude: Optional[Set[str]] = None) -> Optional[ProviderInfo]:
    """First directory entry named inside a free-form hosting/registrar string."""
    if not value:
        return None
    normalized = value.lower()
    exclude = exclude or set()
    for pattern, key in _NAME_PATTERNS:
        provider = PROVIDERS[key]
        if provider.name in exclude:
            continue
        if pattern.search(normalized):
            return provider
    return None


def _fallback_provider(url: Optional[str], abuse_email: Optional[str]) -> ProviderInfo:
    domain = extract_domain(url) or "Service Provider"
    return ProviderInfo(
        name=domain,
        dmca_email=abuse_email or None,
        dmca_form_url=None,
        agent_name=f"{domain} DMCA Agent",
        requirements="Contact the hosting provider or domain registrar directly with this notice.",
        prefers_web_form=False,
        verified=False,
    )


def resolve_provider(
    url: Optional[str],
    platform_hint: Optional[str] = None,
    hosting_provider: Optional[str] = None,
    registrar: Optional[str] = None,
    abuse_email: Optional[str] = None,
) -> ProviderInfo:
    """
    Resolve the single best provider for a URL.

    Tries URL patterns, the platform hint, the hosting provider and the
    registrar in that order, and synthesizes an unverified contact for the
    bare domain when nothing in the directory matches.
    """
    provider_id = match_url(url)
    if provider_id:
        return PROVIDERS[provider_id]

    if platform_hint and platform_hint.lower() in PROVIDERS:
        return PROVIDERS[platform_hint.lower()]

    for candidate in (hosting_provider, registrar):
        matched = _match_name(candidate)
        if matched:
            return matched

    return _fallback_provider(url, abuse_email)


def _with_unverified_note(reason: str, provider: ProviderInfo) -> str:
    return reason if provider.verified else reason + UNVERIFIED_NOTE


def resolve_all_targets(
    url: Optional[str],
    platform_hint: Optional[str] = None,
    hosting_provider: Optional[str] = None,
    registrar: Optional[str] = None,
    abuse_email: Optional[str] = None,
) -> List[EnforcementTarget]:
    """
    Resolve every enforcement target for an infringement, in escalation order.

    The platform (when identifiable) is step 1 and recommended. Hosting is
    recommended only when there is no platform. Registrars are never
    recommended. Google deindexing is always appended once and is recommended
    only when nothing else was found. The returned list is never empty.

    Args:
        url: The infringing URL
        platform_hint: Platform tag from the scan engine
        hosting_provider: Hosting company name from infrastructure profiling
        registrar: Registrar name from WHOIS
        abuse_email: Abuse contact from WHOIS or infrastructure data

    Returns:
        List[EnforcementTarget]: ordered platform -> hosting -> registrar -> search engine
    """
    targets: List[EnforcementTarget] = []
    added: Set[str] = set()

    # Step 1: platform
    platform_provider: Optional[ProviderInfo] = None
    provider_id = match_url(url)
    if provider_id and provider_id != "google":
        platform_provider = PROVIDERS[provider_id]
    if platform_provider is None and platform_hint:
        key = platform_hint.lower()
        if key in PROVIDERS and key != "google":
            platform_provider = PROVIDERS[key]

    if platform_provider:
        added.add(platform_provider.name)
        targets.append(EnforcementTarget(
            type="platform",
            provider=platform_provider,
            step=1,
            recommended=True,
            reason=_with_unverified_note(
                f"Send directly to {platform_provider.name}. Platform takedowns have the highest "
                "success rate and fastest response time.",
                platform_provider,
            ),
            deadline_days=PLATFORM_DEADLINE_DAYS,
        ))

    # Step 2: hosting provider
    hosting_info = _match_name(hosting_provider, exclude=added)
    if hosting_info:
        added.add(hosting_info.name)
        targets.append(EnforcementTarget(
            type="hosting",
            provider=hosting_info,
            step=len(targets) + 1,
            recommended=platform_provider is None,
            reason=_with_unverified_note(
                f"Escalate to hosting provider {hosting_info.name}. Under DMCA Safe Harbor, "
                "they must act or lose protection.",
                hosting_info,
            ),
            deadline_days=ESCALATION_DEADLINE_DAYS,
        ))

    # Step 3: registrar
    if registrar:
        registrar_info = _match_name(registrar, exclude=added)
        if registrar_info:
            added.add(registrar_info.name)
            targets.append(EnforcementTarget(
                type="registrar",
                provider=registrar_info,
                step=len(targets) + 1,
                recommended=False,
                reason=_with_unverified_note(
                    f"Contact domain registrar {registrar_info.name}. Useful when the hosting "
                    "provider doesn't respond.",
                    registrar_info,
                ),
                deadline_days=ESCALATION_DEADLINE_DAYS,
            ))
        elif abuse_email and registrar not in added:
            synthesized = ProviderInfo(
                name=registrar,
                dmca_email=abuse_email,
                dmca_form_url=None,
                agent_name=f"{registrar} Abuse Team",
                requirements="Include the domain name and specific infringing URLs.",
                prefers_web_form=False,
                verified=False,
            )
            added.add(registrar)
            targets.append(EnforcementTarget(
                type="registrar",
                provider=synthesized,
                step=len(targets) + 1,
                recommended=False,
                reason=_with_unverified_note(
                    f"Contact registrar {registrar} via their abuse contact.", synthesized
                ),
                deadline_days=ESCALATION_DEADLINE_DAYS,
            ))

    # Step 4: search engine deindex
    google = PROVIDERS["google"]
    if google.name not in added:
        added.add(google.name)
        targets.append(EnforcementTarget(
            type="search_engine",
            provider=google,
            step=len(targets) + 1,
            recommended=not targets,
            reason=(
                "Request Google to remove the infringing URL from search results. This reduces "
                "discoverability even if the content stays up."
            ),
            deadline_days=DEINDEX_DEADLINE_DAYS,
        ))

    if not targets:
        fallback = _fallback_provider(url, abuse_email)
        targets.append(EnforcementTarget(
            type="platform",
            provider=fallback,
            step=1,
            recommended=True,
            reason=_with_unverified_note("Send directly to the service provider.", fallback),
            deadline_days=ESCALATION_DEADLINE_DAYS,
        ))

    logger.debug(f"Resolved {len(targets)} enforcement targets for {url}")
    return targets


def pick_primary_target(targets: List[EnforcementTarget]) -> EnforcementTarget:
    """The recommended target, or the first one when none is flagged."""
    for target in targets:
        if target.recommended:
            return target
    return targets[0]
