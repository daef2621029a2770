"""Tests for auth/device.py - User-Agent classification."""

from auth.device import parse_device
from conftest import CHROME_MAC_UA, FIREFOX_WINDOWS_UA, SAFARI_IPHONE_UA, TEST_IP

EDGE_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36 Edg/120.0.0.0"
)
IPAD_UA = (
    "Mozilla/5.0 (iPad; CPU OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)
ANDROID_UA = (
    "Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Mobile Safari/537.36"
)


class TestParseDevice:

    def test_chrome_on_mac(self):
        device = parse_device(CHROME_MAC_UA, TEST_IP)
        assert (device.browser, device.os, device.device_type) == ("Chrome", "macOS", "desktop")
        assert device.ip_address == TEST_IP

    def test_firefox_on_windows(self):
        device = parse_device(FIREFOX_WINDOWS_UA)
        assert (device.browser, device.os) == ("Firefox", "Windows")

    def test_edge_is_not_chrome(self):
        assert parse_device(EDGE_UA).browser == "Edge"

    def test_iphone(self):
        device = parse_device(SAFARI_IPHONE_UA)
        assert (device.browser, device.os, device.device_type) == ("Safari", "iOS", "mobile")

    def test_ipad_is_tablet(self):
        assert parse_device(IPAD_UA).device_type == "tablet"

    def test_android_is_not_linux(self):
        device = parse_device(ANDROID_UA)
        assert (device.os, device.device_type) == ("Android", "mobile")

    def test_missing_user_agent(self):
        device = parse_device(None, TEST_IP)
        assert device.browser == "Unknown"
        assert device.display_name == "Unknown Device"

    def test_long_user_agent_truncated(self):
        device = parse_device("x" * 5000)
        assert len(device.user_agent) == 512

    def test_device_hash_ignores_ip(self):
        assert parse_device(CHROME_MAC_UA, "10.0.0.1").device_hash == parse_device(CHROME_MAC_UA, "10.0.0.2").device_hash

    def test_device_hash_differs_by_browser(self):
        assert parse_device(CHROME_MAC_UA).device_hash != parse_device(FIREFOX_WINDOWS_UA).device_hash

    def test_display_name(self):
        assert parse_device(SAFARI_IPHONE_UA).display_name == "Safari - iOS - mobile"
