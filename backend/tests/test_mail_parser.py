"""Raw message parsing: headers, threading ids, bodies, dates."""
from datetime import datetime

import pytest

from app.mail_parser import decode_mime_header, parse_message, strip_reply_prefix


@pytest.mark.parametrize(
    "subject,expected",
    [
        ("Re: Boiler", "Boiler"),
        ("RE: Fwd: FW: Boiler", "Boiler"),
        ("TR : AW: Ref: Boiler", "Boiler"),
        ("Boiler repair: quote", "Boiler repair: quote"),
        ("", ""),
        (None, ""),
    ],
)
def test_strip_reply_prefix(subject, expected):
    assert strip_reply_prefix(subject) == expected


def test_decode_mime_header():
    assert decode_mime_header("=?utf-8?q?Caf=C3=A9_ouvert?=") == "Café ouvert"
    assert decode_mime_header(None) == ""


MULTIPART = b"""Message-ID: <abc123@mail.example.com>
Subject: =?utf-8?q?Fuite_d=27eau?=
From: "Jane Doe" <jane@example.com>
To: support@example.com, "Ops" <ops@example.com>
Cc: boss@example.com
In-Reply-To: <parent@mail.example.com>
References: <root@mail.example.com> <parent@mail.example.com>
Date: Tue, 03 Mar 2026 10:15:00 +0100
MIME-Version: 1.0
Content-Type: multipart/mixed; boundary="XYZ"

--XYZ
Content-Type: multipart/alternative; boundary="ALT"

--ALT
Content-Type: text/plain; charset="utf-8"

Water everywhere
--ALT
Content-Type: text/html; charset="utf-8"

<p>Water everywhere</p>
--ALT--
--XYZ
Content-Type: text/plain; name="notes.txt"
Content-Disposition: attachment; filename="notes.txt"

not a body
--XYZ--
"""


def test_parse_multipart_message():
    parsed = parse_message(MULTIPART, fallback_message_id="fallback")

    assert parsed.message_id == "abc123@mail.example.com"
    assert parsed.subject == "Fuite d'eau"
    assert parsed.from_address == "jane@example.com"
    assert parsed.from_name == "Jane Doe"
    assert parsed.to_addresses == ["support@example.com", "ops@example.com"]
    assert parsed.cc_addresses == ["boss@example.com"]
    assert parsed.in_reply_to == "parent@mail.example.com"
    assert parsed.references == ["root@mail.example.com", "parent@mail.example.com"]
    assert parsed.body_text == "Water everywhere"
    assert parsed.body_html == "<p>Water everywhere</p>"
    # Stored as naive UTC
    assert parsed.received_at == datetime(2026, 3, 3, 9, 15)


def test_missing_headers_use_fallbacks():
    parsed = parse_message(b"Subject: hi\n\nbody\n", fallback_message_id="seq-7-mbx")

    assert parsed.message_id == "seq-7-mbx"
    assert parsed.from_address == ""
    assert parsed.in_reply_to is None
    assert parsed.references == []
    assert parsed.received_at is None
    assert parsed.body_text == "body"
