import copy

import pytest

from hubproxy.capabilities import (
    ProvisionedTarget,
    RawCapabilities,
    compose_final,
    negotiate,
)
from hubproxy.errors import ErrorClassification, InvalidArgument


def _payload(entry: dict, **caps) -> dict:
    return {"capabilities": {"firstMatch": [entry], **caps}}


def test_negotiate_extracts_prefixed_keys_and_keeps_the_rest():
    payload = _payload(
        {
            "appium:appId": "4647915e",
            "appium:deviceName": "iPhone 16 Pro Max",
            "appium:platformVersion": "18.5",
            "appium:wdaLaunchTimeout": 30000,
            "platformName": "IOS",
        }
    )

    params, passthrough = negotiate(payload)

    assert params.application_id == "4647915e"
    assert params.device_name == "iPhone 16 Pro Max"
    assert params.platform_version == "18.5"
    assert dict(passthrough.values) == {
        "appium:wdaLaunchTimeout": 30000,
        "platformName": "IOS",
    }


def test_negotiate_accepts_bare_key_names():
    params, passthrough = negotiate(
        _payload({"applicationId": "A1", "deviceName": "D1", "platformVersion": "18.5"})
    )

    assert (params.application_id, params.device_name, params.platform_version) == (
        "A1",
        "D1",
        "18.5",
    )
    assert dict(passthrough.values) == {}


def test_negotiate_does_not_mutate_input():
    payload = _payload(
        {"appium:appId": "A1", "appium:deviceName": "D1", "appium:platformVersion": "18.5"}
    )
    snapshot = copy.deepcopy(payload)

    negotiate(payload)

    assert payload == snapshot


def test_negotiate_merges_always_match_under_first_match():
    payload = _payload(
        {"appium:deviceName": "D1", "platformName": "iOS"},
        alwaysMatch={
            "appium:appId": "A1",
            "appium:platformVersion": "18.5",
            "platformName": "android",
        },
    )

    params, passthrough = negotiate(payload)

    assert params.application_id == "A1"
    assert passthrough.values["platformName"] == "iOS"


@pytest.mark.parametrize("missing", ["appium:appId", "appium:deviceName", "appium:platformVersion"])
def test_negotiate_rejects_missing_required_capability(missing):
    entry = {"appium:appId": "A1", "appium:deviceName": "D1", "appium:platformVersion": "18.5"}
    del entry[missing]

    with pytest.raises(InvalidArgument) as excinfo:
        negotiate(_payload(entry))

    assert excinfo.value.classification is ErrorClassification.INVALID_ARGUMENT
    assert "Missing required capabilities" in str(excinfo.value)


def test_negotiate_treats_blank_values_as_missing():
    with pytest.raises(InvalidArgument):
        negotiate(_payload({"appium:appId": "  ", "appium:deviceName": "D1", "appium:platformVersion": "18.5"}))


@pytest.mark.parametrize("value", [{"x": 1}, False, 18.5, ["A1"]])
def test_negotiate_rejects_non_string_values(value):
    entry = {"appium:appId": value, "appium:deviceName": "D1", "appium:platformVersion": "18.5"}

    with pytest.raises(InvalidArgument, match="must be a string"):
        negotiate(_payload(entry))


@pytest.mark.parametrize(
    "payload",
    [
        None,
        [],
        {},
        {"capabilities": []},
        {"capabilities": {}},
        {"capabilities": {"firstMatch": []}},
        {"capabilities": {"firstMatch": ["not-an-object"]}},
        {"desiredCapabilities": {"appId": "A1", "deviceName": "D1", "platformVersion": "18.5"}},
    ],
)
def test_negotiate_rejects_malformed_envelopes(payload):
    with pytest.raises(InvalidArgument):
        negotiate(payload)


def test_compose_final_substitutes_target_and_fills_platform_defaults():
    passthrough = RawCapabilities(values={"appium:wdaLaunchTimeout": 30000})
    target = ProvisionedTarget(device_identifier="53DFCED5", bundle_identifier="io.appium.TestApp")

    final = compose_final(
        passthrough,
        target,
        default_platform_name="iOS",
        default_automation_name="XCUITest",
    )

    assert final.to_payload() == {
        "capabilities": {
            "firstMatch": [
                {
                    "appium:wdaLaunchTimeout": 30000,
                    "platformName": "iOS",
                    "appium:automationName": "XCUITest",
                    "appium:udid": "53DFCED5",
                    "appium:bundleId": "io.appium.TestApp",
                }
            ]
        }
    }


def test_compose_final_keeps_client_platform_choices():
    passthrough = RawCapabilities(
        values={"platformName": "IOS", "appium:automationName": "XCUITest-custom"}
    )
    target = ProvisionedTarget(device_identifier="U1", bundle_identifier="B1")

    final = compose_final(
        passthrough,
        target,
        default_platform_name="iOS",
        default_automation_name="XCUITest",
    )

    assert final.values["platformName"] == "IOS"
    assert final.values["appium:automationName"] == "XCUITest-custom"
    assert "appium:appId" not in final.values
