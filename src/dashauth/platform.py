"""Host classification and authentication strategy recommendation.

:func:`classify` and :func:`recommend_strategy` are pure functions of a
:class:`~dashauth.models.PlatformSignals` value; nothing here reads the
process environment. Hosts that only have a raw user-agent string can turn
it into signals with :func:`signals_from_user_agent`, which is the only
place where string sniffing happens.

Decision order for :func:`recommend_strategy` (first match wins):

1. native bridge present and platform is not Fire TV -> ``native``
2. TV device, or Fire TV platform -> ``device_flow``
3. desktop browser or embedded web view -> ``web_oauth``
4. anything else -> ``unsupported``
"""

from __future__ import annotations

import re
from typing import Optional

from dashauth.models import (
    Classification,
    DeviceCategory,
    Platform,
    PlatformSignals,
    Strategy,
)

_TV_PLATFORMS = frozenset(
    {Platform.FIRE_TV, Platform.CHROME_TV, Platform.SAMSUNG_TV, Platform.LG_TV}
)
_WEB_PLATFORMS = frozenset(
    {Platform.BROWSER, Platform.ANDROID_WEBVIEW, Platform.IOS_WEBVIEW}
)
_WEBVIEW_PLATFORMS = frozenset(
    {Platform.ANDROID_WEBVIEW, Platform.IOS_WEBVIEW, Platform.ANDROID_NATIVE}
)


def classify(signals: PlatformSignals) -> Classification:
    """Return the platform and device category for *signals*.

    A missing device category is inferred from the platform: every TV
    platform is a TV, a desktop browser is a desktop.
    """
    device = signals.device
    if device == DeviceCategory.UNKNOWN:
        if signals.platform in _TV_PLATFORMS:
            device = DeviceCategory.TV
        elif signals.platform == Platform.BROWSER:
            device = DeviceCategory.DESKTOP
    return Classification(platform=signals.platform, device=device)


def recommend_strategy(
    signals: PlatformSignals,
    classification: Optional[Classification] = None,
) -> Strategy:
    """Pick the single authentication strategy for the host described by *signals*."""
    if classification is None:
        classification = classify(signals)
    platform = classification.platform

    if signals.native_bridge and platform != Platform.FIRE_TV:
        return Strategy.NATIVE
    if classification.device == DeviceCategory.TV or platform == Platform.FIRE_TV:
        return Strategy.DEVICE_FLOW
    if platform in _WEB_PLATFORMS:
        return Strategy.WEB_OAUTH
    return Strategy.UNSUPPORTED


def is_tv(classification: Classification) -> bool:
    return classification.device == DeviceCategory.TV or classification.platform in _TV_PLATFORMS


def is_webview(classification: Classification) -> bool:
    return classification.platform in _WEBVIEW_PLATFORMS


# ------------------------------------------------------------------ #
# User-agent sniffing
# ------------------------------------------------------------------ #

_FIRE_TV = re.compile(r"\bAFT[A-Z0-9]+\b|FireTV|Fire TV")
_ANDROID_TV = re.compile(r"Android.*(?:\bTV\b|GoogleTV|AndroidTV)", re.IGNORECASE)
_SAMSUNG_TV = re.compile(r"SmartTV|Tizen", re.IGNORECASE)
_LG_TV = re.compile(r"webOS|NetCast", re.IGNORECASE)
_IOS = re.compile(r"iPhone|iPad|iPod")


def signals_from_user_agent(user_agent: str, native_bridge: bool = False) -> PlatformSignals:
    """Build :class:`PlatformSignals` from a raw user-agent string.

    Args:
        user_agent: The host's ``User-Agent`` header value.
        native_bridge: Whether the host exposes a native sign-in bridge.
            An Android web view with a bridge is reported as
            :attr:`Platform.ANDROID_NATIVE`.
    """
    ua = user_agent or ""

    if _FIRE_TV.search(ua):
        platform, device = Platform.FIRE_TV, DeviceCategory.TV
    elif _ANDROID_TV.search(ua):
        platform, device = Platform.CHROME_TV, DeviceCategory.TV
    elif "Samsung" in ua and _SAMSUNG_TV.search(ua):
        platform, device = Platform.SAMSUNG_TV, DeviceCategory.TV
    elif ("LG" in ua or "webOS" in ua) and _LG_TV.search(ua):
        platform, device = Platform.LG_TV, DeviceCategory.TV
    elif "Android" in ua and _is_android_webview(ua):
        platform = Platform.ANDROID_NATIVE if native_bridge else Platform.ANDROID_WEBVIEW
        device = DeviceCategory.TABLET if "Mobile" not in ua else DeviceCategory.MOBILE
    elif _IOS.search(ua) and "Safari" not in ua:
        platform = Platform.IOS_WEBVIEW
        device = DeviceCategory.TABLET if "iPad" in ua else DeviceCategory.MOBILE
    elif ua:
        platform = Platform.BROWSER
        if "Android" in ua or _IOS.search(ua):
            device = DeviceCategory.TABLET if "iPad" in ua else DeviceCategory.MOBILE
        else:
            device = DeviceCategory.DESKTOP
    else:
        platform, device = Platform.UNKNOWN, DeviceCategory.UNKNOWN

    return PlatformSignals(
        platform=platform,
        device=device,
        native_bridge=native_bridge,
        user_agent=user_agent,
    )


def _is_android_webview(ua: str) -> bool:
    if "; wv)" in ua or " wv " in ua or "DashieApp" in ua:
        return True
    return "AppleWebKit" in ua and "Chrome" not in ua
