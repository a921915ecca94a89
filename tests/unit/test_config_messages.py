"""Unit tests for configuration channel requests, reply framing and decoding."""

from __future__ import annotations

import pytest
from conftest import project_document

from vantage_controller.exceptions import ConfigReplyError
from vantage_controller.protocol.config_messages import (
    GetFilterResultsReply,
    IntrospectionReply,
    LoginReply,
    OpenFilterReply,
    ReplyBuffer,
    build_configuration_document,
    decode_reply,
    get_filter_results_request,
    login_request,
    open_filter_request,
    parse_configuration_document,
)

INTROSPECTION = (
    "<IIntrospection><GetInterfaces><return>"
    "<Interface><Name>Load</Name><IID>11</IID></Interface>"
    "<Interface><Name>Thermostat</Name><IID>23</IID></Interface>"
    "</return></GetInterfaces></IIntrospection>"
)


class TestRequests:
    """Request builders."""

    def test_open_filter_has_master_prefix(self) -> None:
        request = open_filter_request(2, "Load")
        assert request.startswith("<?Master 2?><IConfiguration><OpenFilter>")
        assert "<ObjectType>Load</ObjectType>" in request
        assert request.endswith("\n")

    def test_get_filter_results(self) -> None:
        request = get_filter_results_request("77", count=50)
        assert "<Count>50</Count>" in request
        assert "<WholeObject>true</WholeObject>" in request
        assert "<hFilter>77</hFilter>" in request

    def test_login_escapes_markup(self) -> None:
        request = login_request("admin", "a<b&c")
        assert "<User>admin</User>" in request
        assert "a&lt;b&amp;c" in request


class TestDecodeReply:
    """Typed reply variants."""

    def test_introspection(self) -> None:
        reply = decode_reply(INTROSPECTION)
        assert reply == IntrospectionReply({"Load": 11, "Thermostat": 23})

    def test_login(self) -> None:
        assert decode_reply("<ILogin><Login><return>true</return></Login></ILogin>") == LoginReply(True)
        assert decode_reply("<ILogin><Login><return>false</return></Login></ILogin>") == LoginReply(False)

    def test_open_filter_with_master(self) -> None:
        reply = decode_reply("<?Master 3?><IConfiguration><OpenFilter><return>91</return></OpenFilter></IConfiguration>")
        assert reply == OpenFilterReply("91", 3)

    def test_open_filter_without_master(self) -> None:
        reply = decode_reply("<IConfiguration><OpenFilter><return>91</return></OpenFilter></IConfiguration>")
        assert reply == OpenFilterReply("91", None)

    def test_filter_results_single_object(self) -> None:
        reply = decode_reply(
            "<IConfiguration><GetFilterResults><return>"
            '<Object><Load VID="12"><Name>Lamp</Name></Load></Object>'
            "</return></GetFilterResults></IConfiguration>"
        )
        assert isinstance(reply, GetFilterResultsReply)
        assert len(reply.objects) == 1
        assert reply.objects[0]["Load"]["@VID"] == "12"

    def test_filter_results_empty(self) -> None:
        reply = decode_reply("<IConfiguration><GetFilterResults><return/></GetFilterResults></IConfiguration>")
        assert reply == GetFilterResultsReply([])

    def test_smarterhome_wrapper(self) -> None:
        reply = decode_reply(f"<smarterHome>{INTROSPECTION}</smarterHome>")
        assert isinstance(reply, IntrospectionReply)

    def test_malformed(self) -> None:
        with pytest.raises(ConfigReplyError):
            decode_reply("<IConfiguration><OpenFilter>")

    def test_unknown_envelope(self) -> None:
        with pytest.raises(ConfigReplyError):
            decode_reply("<Other/>")


class TestReplyBuffer:
    """Reassembly of envelopes split across reads."""

    def test_waits_for_closing_tag(self) -> None:
        buffer = ReplyBuffer()
        buffer.feed(b"<ILogin><Login><return>tr")
        assert buffer.next_document() is None
        buffer.feed(b"ue</return></Login></ILogin>")
        assert buffer.next_document() == "<ILogin><Login><return>true</return></Login></ILogin>"
        assert len(buffer) == 0

    def test_two_envelopes_in_one_read(self) -> None:
        buffer = ReplyBuffer()
        first = "<ILogin><Login><return>true</return></Login></ILogin>"
        second = "<?Master 1?><IConfiguration><OpenFilter><return>5</return></OpenFilter></IConfiguration>"
        buffer.feed((first + "\r\n" + second).encode())
        assert buffer.next_document() == first
        assert buffer.next_document() == second
        assert buffer.next_document() is None

    def test_bom_and_noise_are_dropped(self) -> None:
        buffer = ReplyBuffer()
        buffer.feed("\ufeffgarbage<ILogin><Login><return>true</return></Login></ILogin>".encode())
        assert buffer.next_document() == "<ILogin><Login><return>true</return></Login></ILogin>"

    def test_clear(self) -> None:
        buffer = ReplyBuffer()
        buffer.feed(b"<ILogin>")
        buffer.clear()
        assert len(buffer) == 0

    def test_unterminated_reply_is_discarded_past_limit(self) -> None:
        buffer = ReplyBuffer(max_size=64)
        buffer.feed(b"<IConfiguration><GetFilterResults><return>")
        assert len(buffer) > 0
        buffer.feed(b"<Object>" * 8)
        assert len(buffer) == 0
        buffer.feed(b"<ILogin><Login><return>true</return></Login></ILogin>")
        assert buffer.next_document() == "<ILogin><Login><return>true</return></Login></ILogin>"

    def test_complete_reply_over_limit_is_kept(self) -> None:
        reply = "<ILogin><Login><return>true</return></Login></ILogin>"
        buffer = ReplyBuffer(max_size=16)
        buffer.feed(reply.encode())
        assert buffer.next_document() == reply


class TestConfigurationDocument:
    """Synthetic document assembly and flattening."""

    def test_round_trip_keeps_order_and_attributes(self) -> None:
        objects = [
            {"Area": {"@VID": "1", "Name": "Kitchen", "ObjectType": "Area"}},
            {"Load": {"@VID": "12", "Name": "Pendant", "Area": "1", "ObjectType": "Load"}},
        ]
        flat = parse_configuration_document(build_configuration_document(objects))
        assert [obj["VID"] for obj in flat] == ["1", "12"]
        assert flat[1]["Name"] == "Pendant"
        assert flat[1]["ObjectType"] == "Load"

    def test_object_type_falls_back_to_element_name(self) -> None:
        flat = parse_configuration_document(project_document(['<QISBlind VID="4"><Name>Shade</Name></QISBlind>']))
        assert flat == [{"VID": "4", "Name": "Shade", "ObjectType": "QISBlind"}]

    def test_malformed_document(self) -> None:
        with pytest.raises(ConfigReplyError):
            parse_configuration_document("<Project><Objects>")

    def test_empty_document(self) -> None:
        assert parse_configuration_document("<Project><Objects/></Project>") == []
