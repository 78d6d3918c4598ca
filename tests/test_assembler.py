"""
Tests for snapshot assembly and the cookie/compression/status helpers.
"""

import dataclasses

import pytest
from werkzeug.datastructures import Headers

from assembler import (
    ResponseAssembler, compression_info, custom_status_code, environment_subset, kubernetes_info,
    parse_cookies, parse_expires, parse_set_cookie, remote_address,
)
from conftest import make_jwt
from settings import Settings

EXPECTED_DATE = "Wed, 21 Oct 2015 07:28:00 GMT"

K8S_ENV = {
    "K8S_NAMESPACE": "default",
    "K8S_POD_NAME": "echo-123",
    "K8S_POD_IP": "10.0.0.5",
    "K8S_NODE_NAME": "node-1",
    "KUBERNETES_SERVICE_HOST": "10.96.0.1",
    "KUBERNETES_SERVICE_PORT": "443",
    "K8S_LABEL_app": "echo",
    "K8S_ANNOTATION_team": "platform",
}


class TestSetCookie:

    def test_full_attribute_set(self):
        c = parse_set_cookie("a=b; Path=/x; HttpOnly; Secure; SameSite=Strict")

        assert (c.name, c.value, c.path) == ("a", "b", "/x")
        assert c.http_only is True
        assert c.secure is True
        assert c.same_site == "Strict"

    def test_domain_and_max_age(self):
        c = parse_set_cookie("session=xyz; Domain=example.com; Max-Age=3600")
        assert c.domain == "example.com"
        assert c.max_age == 3600

    @pytest.mark.parametrize("value", [
        EXPECTED_DATE,
        "Wednesday, 21-Oct-15 07:28:00 GMT",
        "Wed Oct 21 07:28:00 2015",
        "2015-10-21T07:28:00Z",
    ])
    def test_expires_formats(self, value):
        assert parse_set_cookie(f"a=b; Expires={value}").expires == EXPECTED_DATE

    def test_bad_attributes_ignored(self):
        c = parse_set_cookie("a=b; Expires=tomorrow; Max-Age=soon; SameSite=Sometimes; Unknown=1; Priority")
        assert c == parse_set_cookie("a=b")
        assert (c.expires, c.max_age, c.same_site) == ("", 0, "")

    @pytest.mark.parametrize("value", ["lax", "LAX", "Lax"])
    def test_samesite_case_insensitive(self, value):
        assert parse_set_cookie(f"a=b; samesite={value}").same_site == "Lax"

    @pytest.mark.parametrize("value", ["", "novalue", "; Path=/"])
    def test_missing_name_value(self, value):
        assert parse_set_cookie(value) is None

    def test_to_dict_omits_unset_attributes(self):
        assert parse_set_cookie("a=b").to_dict() == {"name": "a", "value": "b"}

    def test_parse_expires_rejects_garbage(self):
        assert parse_expires("not a date") is None


def test_parse_cookies_skips_pairs_without_equals():
    cookies = parse_cookies("a=1; broken; c=x=y; =nameless")
    assert [(c.name, c.value) for c in cookies] == [("a", "1"), ("c", "x=y")]


@pytest.mark.parametrize("value,expected", [
    ("404", 404), ("200", 200), ("599", 599), ("201 ", 201),
    ("700", 200), ("199", 200), ("abc", 200), ("", 200), ("-500", 200),
    ("+404", 404), ("4_04", 200), ("\u0664\u0660\u0664", 200), ("+-404", 200), ("404.0", 200),
])
def test_custom_status_code(value, expected):
    assert custom_status_code(Headers({"X-Set-Response-Status-Code": value})) == expected


def test_custom_status_code_absent():
    assert custom_status_code(Headers()) == 200


class TestRemoteAddress:

    def test_forwarded_for_first_entry(self):
        h = Headers({"X-Forwarded-For": " 203.0.113.7 , 10.0.0.1", "X-Real-IP": "198.51.100.2"})
        assert remote_address(h, "127.0.0.1") == "203.0.113.7"

    def test_real_ip(self):
        assert remote_address(Headers({"X-Real-IP": "198.51.100.2"}), "127.0.0.1") == "198.51.100.2"

    def test_peer(self):
        assert remote_address(Headers(), "127.0.0.1") == "127.0.0.1"
        assert remote_address(Headers(), None) == ""


class TestCompression:

    def test_accepted_encodings_in_order(self):
        info = compression_info(Headers({"Accept-Encoding": "gzip, deflate;q=0.5, br;q=0.1"}))
        assert info.accepted_encodings == ("gzip", "deflate", "br")
        assert info.supported is True
        assert info.response_encoding == ""

    def test_no_header(self):
        info = compression_info(Headers())
        assert info.supported is False
        assert info.to_dict() == {"supported": False}

    def test_response_encoding_is_independent(self):
        assert compression_info(Headers(), "gzip").response_encoding == "gzip"
        assert compression_info(Headers(), "gzip").supported is False


class TestEnvironment:

    def test_default_shows_hostname_and_k8s_vars(self):
        settings = Settings.from_env({"HOSTNAME": "box", "K8S_FOO": "bar", "SECRET": "s"})
        assert environment_subset(settings) == {"HOSTNAME": "box", "K8S_FOO": "bar"}

    def test_display_list(self):
        settings = Settings.from_env({
            "ECHO_ENVIRONMENT_VARIABLES_DISPLAY": "FOO, MISSING ,BAR",
            "FOO": "1", "BAR": "2", "HOSTNAME": "box",
        })
        assert environment_subset(settings) == {"FOO": "1", "BAR": "2"}

    def test_k8s_vars_hidden_inside_kubernetes(self):
        settings = Settings.from_env(dict(K8S_ENV, HOSTNAME="box"))
        assert environment_subset(settings) == {"HOSTNAME": "box"}

    def test_kubernetes_info(self):
        info = kubernetes_info(K8S_ENV)

        assert info.namespace == "default"
        assert info.pod_name == "echo-123"
        assert info.pod_ip == "10.0.0.5"
        assert info.service_port == "443"
        assert info.labels == {"app": "echo"}
        assert info.annotations == {"team": "platform"}

    def test_kubernetes_requires_namespace_and_pod(self):
        assert kubernetes_info({"K8S_NAMESPACE": "default"}) is None
        assert kubernetes_info({}) is None


class TestAssembler:

    @pytest.fixture
    def assembler(self, settings):
        return ResponseAssembler(settings)

    def test_get_request(self, assembler):
        snap = assembler.assemble("GET", "/foo", "a=1", {"Host": "localhost", "Cookie": "a=1; b=2"},
                                  peer="127.0.0.1")

        req = snap.to_dict()["request"]
        assert req["method"] == "GET"
        assert req["path"] == "/foo"
        assert req["query"] == "a=1"
        assert req["headers"] == {"Host": "localhost", "Cookie": "a=1; b=2"}
        assert req["remoteAddress"] == "127.0.0.1"
        assert req["cookies"] == [{"name": "a", "value": "1"}, {"name": "b", "value": "2"}]
        assert "body" not in req
        assert snap.kubernetes is None
        assert snap.jwt_tokens == {}

    def test_body_ignored_for_get(self, assembler):
        snap = assembler.assemble("GET", "/", "", {}, body=b'{"a":1}', content_type="application/json")
        assert snap.request.body is None

    @pytest.mark.parametrize("method", ["POST", "PUT", "PATCH", "DELETE"])
    def test_body_parsed_for_body_methods(self, assembler, method):
        snap = assembler.assemble(method, "/", "", {}, body=b'{"a":1}', content_type="application/json")
        assert snap.request.body.content == {"a": 1}

    def test_tokens_and_case_insensitive_lookup(self, assembler):
        token = make_jwt({"alg": "HS256"}, {"sub": "x"})
        snap = assembler.assemble("GET", "/", "", {"X-Jwt-Token": token, "AUTHORIZATION": f"Bearer {token}"})
        assert set(snap.jwt_tokens) == {"Authorization", "X-JWT-Token"}
        assert snap.to_dict()["jwtTokens"]["Authorization"]["payload"] == {"sub": "x"}

    def test_certificate_in_server_block(self, settings, generated_certificate):
        assembler = ResponseAssembler(settings, certificate=generated_certificate.descriptor)
        server = assembler.assemble("GET", "/", "", {}).to_dict()["server"]
        assert server["tls"]["enabled"] is True
        assert server["tls"]["subject"] == "CN=test-host,O=Echo Server"

    def test_kubernetes_block(self):
        assembler = ResponseAssembler(Settings.from_env(K8S_ENV))
        out = assembler.assemble("GET", "/", "", {}).to_dict()
        assert out["kubernetes"]["podName"] == "echo-123"
        assert out["kubernetes"]["labels"] == {"app": "echo"}

    def test_snapshot_is_immutable(self, assembler):
        snap = assembler.assemble("GET", "/", "", {})
        with pytest.raises(dataclasses.FrozenInstanceError):
            snap.request = None
