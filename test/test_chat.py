"""채팅 채널/로그 테스트.

사용법:
    pytest test/test_chat.py
"""

from conftest import FakeDataChannel

from meshroom.modules.webrtc import ChatChannel, ChatLog, ChatMessage


def paired_channels():
    local, remote = FakeDataChannel(), FakeDataChannel()
    local.peer, remote.peer = remote, local
    return local, remote


def test_message_format():
    assert ChatMessage(sender="A1", text="hi").format() == "[A1] hi"


def test_send_before_bind_or_open_is_dropped():
    received = []
    chat = ChatChannel("B1", received.append)

    assert chat.send("lost") is False

    local, _ = paired_channels()
    chat.bind(local)
    assert chat.is_open is False
    assert chat.send("still lost") is False
    assert local.sent == []


def test_open_channel_delivers_tagged_message():
    a_log, b_log = ChatLog(), ChatLog()
    a_side = ChatChannel("B1", a_log.record)
    b_side = ChatChannel("A1", b_log.record)
    local, remote = paired_channels()
    a_side.bind(local)
    b_side.bind(remote)
    local.open()
    remote.open()

    assert a_side.send("hi") is True

    assert list(b_log.lines) == ["[A1] hi"]
    assert list(a_log.lines) == []


def test_bytes_are_decoded_as_utf8():
    received = []
    chat = ChatChannel("A1", received.append)
    channel = FakeDataChannel()
    chat.bind(channel)

    channel.emit("message", "안녕".encode("utf-8"))

    assert received[0].text == "안녕"
    assert received[0].sender == "A1"


def test_close_unbinds_and_ignores_late_messages():
    received = []
    chat = ChatChannel("A1", received.append)
    channel = FakeDataChannel()
    chat.bind(channel)
    channel.open()

    chat.close()
    channel.emit("message", "late")

    assert channel.readyState == "closed"
    assert chat.channel is None
    assert received == []
    assert chat.send("after close") is False


def test_chat_log_keeps_recent_lines_and_notifies_subscribers():
    log = ChatLog(maxlen=2)
    seen = []
    log.subscribe(seen.append)

    log.system("peer joined: Bob")
    log.record(ChatMessage(sender="B1", text="one"))
    log.record(ChatMessage(sender="B1", text="two"))

    assert list(log.lines) == ["[B1] one", "[B1] two"]
    assert seen == ["peer joined: Bob", "[B1] one", "[B1] two"]


def test_failing_subscriber_does_not_break_log():
    log = ChatLog()

    def broken(line):
        raise RuntimeError("boom")

    log.subscribe(broken)
    log.system("still recorded")

    assert list(log.lines) == ["still recorded"]
