"""Tests for dashauth.platform -- host classification and strategy choice."""

from __future__ import annotations

import pytest

from dashauth.models import Classification, DeviceCategory, Platform, PlatformSignals, Strategy
from dashauth.platform import (
    classify,
    is_tv,
    is_webview,
    recommend_strategy,
    signals_from_user_agent,
)

FIRE_TV_UA = (
    "Mozilla/5.0 (Linux; Android 9; AFTMM Build/PS7233; wv) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Version/4.0 Chrome/108.0.5359.160 Mobile Safari/537.36"
)
CHROME_DESKTOP_UA = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)
ANDROID_WEBVIEW_UA = (
    "Mozilla/5.0 (Linux; Android 13; Pixel 7; wv) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Version/4.0 Chrome/120.0.0.0 Mobile Safari/537.36"
)
IOS_WEBVIEW_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Mobile/15E148"
)
SAMSUNG_TV_UA = (
    "Mozilla/5.0 (SMART-TV; LINUX; Tizen 6.0) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Version/6.0 TV Safari/537.36 Samsung"
)
LG_TV_UA = "Mozilla/5.0 (Web0S; Linux/SmartTV) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/79.0 Safari/537.36 webOS.TV-2021 LG"


def _signals(**kwargs: object) -> PlatformSignals:
    return PlatformSignals(**kwargs)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# classify
# ---------------------------------------------------------------------------


class TestClassify:
    @pytest.mark.parametrize(
        "platform",
        [Platform.FIRE_TV, Platform.CHROME_TV, Platform.SAMSUNG_TV, Platform.LG_TV],
    )
    def test_tv_platforms_infer_tv_device(self, platform: Platform) -> None:
        result = classify(_signals(platform=platform))
        assert result.device == DeviceCategory.TV

    def test_browser_infers_desktop(self) -> None:
        assert classify(_signals(platform=Platform.BROWSER)).device == DeviceCategory.DESKTOP

    def test_explicit_device_is_kept(self) -> None:
        result = classify(_signals(platform=Platform.BROWSER, device=DeviceCategory.MOBILE))
        assert result == Classification(platform=Platform.BROWSER, device=DeviceCategory.MOBILE)

    def test_unknown_stays_unknown(self) -> None:
        result = classify(_signals())
        assert result.platform == Platform.UNKNOWN
        assert result.device == DeviceCategory.UNKNOWN


# ---------------------------------------------------------------------------
# recommend_strategy
# ---------------------------------------------------------------------------


class TestRecommendStrategy:
    def test_native_bridge_wins(self) -> None:
        signals = _signals(platform=Platform.ANDROID_NATIVE, native_bridge=True)
        assert recommend_strategy(signals) == Strategy.NATIVE

    def test_fire_tv_with_bridge_uses_device_flow(self) -> None:
        signals = _signals(platform=Platform.FIRE_TV, native_bridge=True)
        assert recommend_strategy(signals) == Strategy.DEVICE_FLOW

    def test_tv_device_uses_device_flow(self) -> None:
        signals = _signals(platform=Platform.SAMSUNG_TV)
        assert recommend_strategy(signals) == Strategy.DEVICE_FLOW

    def test_unknown_platform_on_tv_device_uses_device_flow(self) -> None:
        signals = _signals(device=DeviceCategory.TV)
        assert recommend_strategy(signals) == Strategy.DEVICE_FLOW

    @pytest.mark.parametrize(
        "platform", [Platform.BROWSER, Platform.ANDROID_WEBVIEW, Platform.IOS_WEBVIEW]
    )
    def test_web_platforms_use_web_oauth(self, platform: Platform) -> None:
        assert recommend_strategy(_signals(platform=platform)) == Strategy.WEB_OAUTH

    def test_unknown_is_unsupported(self) -> None:
        assert recommend_strategy(_signals()) == Strategy.UNSUPPORTED

    def test_android_native_without_bridge_is_unsupported(self) -> None:
        assert recommend_strategy(_signals(platform=Platform.ANDROID_NATIVE)) == Strategy.UNSUPPORTED

    def test_accepts_precomputed_classification(self) -> None:
        signals = _signals(platform=Platform.BROWSER)
        classification = Classification(platform=Platform.BROWSER, device=DeviceCategory.TV)
        assert recommend_strategy(signals, classification) == Strategy.DEVICE_FLOW


class TestHelpers:
    def test_is_tv(self) -> None:
        assert is_tv(Classification(platform=Platform.LG_TV, device=DeviceCategory.UNKNOWN))
        assert not is_tv(Classification(platform=Platform.BROWSER, device=DeviceCategory.DESKTOP))

    def test_is_webview(self) -> None:
        assert is_webview(Classification(platform=Platform.IOS_WEBVIEW, device=DeviceCategory.MOBILE))
        assert not is_webview(Classification(platform=Platform.BROWSER, device=DeviceCategory.DESKTOP))


# ---------------------------------------------------------------------------
# signals_from_user_agent
# ---------------------------------------------------------------------------


class TestSignalsFromUserAgent:
    def test_fire_tv(self) -> None:
        signals = signals_from_user_agent(FIRE_TV_UA, native_bridge=True)
        assert signals.platform == Platform.FIRE_TV
        assert signals.device == DeviceCategory.TV
        assert recommend_strategy(signals) == Strategy.DEVICE_FLOW

    def test_desktop_browser(self) -> None:
        signals = signals_from_user_agent(CHROME_DESKTOP_UA)
        assert signals.platform == Platform.BROWSER
        assert signals.device == DeviceCategory.DESKTOP
        assert recommend_strategy(signals) == Strategy.WEB_OAUTH

    def test_android_webview(self) -> None:
        signals = signals_from_user_agent(ANDROID_WEBVIEW_UA)
        assert signals.platform == Platform.ANDROID_WEBVIEW
        assert signals.device == DeviceCategory.MOBILE

    def test_android_webview_with_bridge_is_native(self) -> None:
        signals = signals_from_user_agent(ANDROID_WEBVIEW_UA, native_bridge=True)
        assert signals.platform == Platform.ANDROID_NATIVE
        assert recommend_strategy(signals) == Strategy.NATIVE

    def test_ios_webview(self) -> None:
        signals = signals_from_user_agent(IOS_WEBVIEW_UA)
        assert signals.platform == Platform.IOS_WEBVIEW
        assert signals.device == DeviceCategory.MOBILE

    def test_samsung_tv(self) -> None:
        assert signals_from_user_agent(SAMSUNG_TV_UA).platform == Platform.SAMSUNG_TV

    def test_lg_tv(self) -> None:
        assert signals_from_user_agent(LG_TV_UA).platform == Platform.LG_TV

    def test_word_starting_with_aft_is_not_fire_tv(self) -> None:
        signals = signals_from_user_agent("Aftermath/1.0 (X11; Linux x86_64)")
        assert signals.platform == Platform.BROWSER

    def test_empty_user_agent_is_unknown(self) -> None:
        signals = signals_from_user_agent("")
        assert signals.platform == Platform.UNKNOWN
        assert recommend_strategy(signals) == Strategy.UNSUPPORTED
