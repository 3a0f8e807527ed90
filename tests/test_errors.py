import pytest

from image_builder.errors import (
    BuildError,
    DeployErrorKind,
    RemoteDeployError,
    classify_deploy_error,
)


@pytest.mark.parametrize(
    ("cause", "kind"),
    [
        ("HTTP 401 Unauthorized", DeployErrorKind.AUTHENTICATION),
        ("404 Not Found", DeployErrorKind.NOT_FOUND),
        ("x509: certificate signed by unknown authority", DeployErrorKind.TLS),
        ("TLS handshake timeout", DeployErrorKind.TLS),
        ("invalid OVF descriptor", DeployErrorKind.VALIDATION),
        ("insufficient disk space on datastore", DeployErrorKind.RESOURCE),
        ("dial tcp 10.0.0.1:443: connection refused", DeployErrorKind.NETWORK),
        ("lookup files.example.com: no such host", DeployErrorKind.NETWORK),
        ("access denied for user", DeployErrorKind.PERMISSION),
        ("operation was cancelled by user", DeployErrorKind.CANCELLED),
        ("something odd happened", DeployErrorKind.GENERIC),
    ],
)
def test_classify_deploy_error(cause, kind):
    assert classify_deploy_error(cause)[0] == kind


def test_generic_message_format():
    assert classify_deploy_error("boom") == (
        DeployErrorKind.GENERIC,
        "deployment failed: boom",
    )


def test_classified_message_carries_hint_and_cause():
    _, message = classify_deploy_error("HTTP 404")
    assert message.startswith("remote source file not found.")
    assert message.endswith(". Error: HTTP 404")


def test_remote_deploy_error_sanitizes_url_and_secrets():
    error = RemoteDeployError(
        url="https://bob:topsecret@h/a.ova",
        cause="server said topsecret is wrong",
        secrets=("topsecret",),
    )
    assert error.url == "https://bob@h/a.ova"
    assert "topsecret" not in str(error)
    assert str(error).startswith("OVF deployment failed for remote source 'https://bob@h/a.ova': ")


def test_remote_deploy_error_with_invalid_url_uses_placeholder():
    error = RemoteDeployError(url="https://h/%zz", cause="boom")
    assert error.url == "[invalid URL]"
    assert str(error) == (
        "OVF deployment failed for remote source '[invalid URL]': deployment failed: boom"
    )


def test_build_error_message():
    error = BuildError(vm_name="vm", detail="clone failed")
    assert str(error) == "build failed vm_name=vm: clone failed"
    assert error.cancelled is False
