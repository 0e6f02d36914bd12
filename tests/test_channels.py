import pytest
import requests
from botocore.exceptions import ClientError

from admissions.services.channel_service import ChannelAdapter, DeliveryError, SesEmailChannel, TwilioWhatsAppChannel
from admissions.services.submission_service import FormFieldProvider


class FakeSesClient:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def send_email(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        return {"MessageId": "ses-123"}


class FakeResponse:
    def __init__(self, status_code=201, payload=None):
        self.status_code = status_code
        self._payload = payload or {"sid": "SM123"}

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Client Error")

    def json(self):
        return self._payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response or FakeResponse()
        self.error = error
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.error:
            raise self.error
        return self.response


def test_ses_without_sender_runs_in_mock_mode():
    client = FakeSesClient()
    channel = SesEmailChannel(from_address="", provider="ses", client=client)

    assert channel.is_mock
    assert channel.send("ada@example.com", "Hi", "Body") == {"mode": "mock"}
    assert client.calls == []


def test_ses_send_email():
    client = FakeSesClient()
    channel = SesEmailChannel(from_address="admissions@example.com", from_name="Admissions", provider="ses", client=client)

    result = channel.send("ada@example.com", "Welcome", "Hello Ada")

    assert result == {"mode": "ses", "provider_id": "ses-123"}
    call = client.calls[0]
    assert call["Source"] == "Admissions <admissions@example.com>"
    assert call["Destination"] == {"ToAddresses": ["ada@example.com"]}
    assert call["Message"]["Subject"]["Data"] == "Welcome"
    assert call["Message"]["Body"]["Text"]["Data"] == "Hello Ada"


def test_ses_client_error_becomes_delivery_error():
    error = ClientError({"Error": {"Code": "MessageRejected", "Message": "Email address is not verified."}}, "SendEmail")
    channel = SesEmailChannel(from_address="admissions@example.com", provider="ses", client=FakeSesClient(error))

    with pytest.raises(DeliveryError) as exc:
        channel.send("ada@example.com", "Hi", "Body")
    assert "MessageRejected" in str(exc.value)


def test_twilio_mock_mode_when_not_configured():
    channel = TwilioWhatsAppChannel(account_sid="", auth_token="", from_number="", provider="twilio")
    assert channel.send("+15550001", None, "Hi") == {"mode": "mock"}


def test_twilio_send_whatsapp():
    session = FakeSession()
    channel = TwilioWhatsAppChannel(
        account_sid="AC1", auth_token="secret", from_number="+15550000", provider="twilio", timeout=3, session=session
    )

    result = channel.send("+15550001", None, "Hi")

    assert result == {"mode": "twilio", "provider_id": "SM123"}
    url, kwargs = session.calls[0]
    assert url.endswith("/Accounts/AC1/Messages.json")
    assert kwargs["data"] == {"From": "whatsapp:+15550000", "To": "whatsapp:+15550001", "Body": "Hi"}
    assert kwargs["auth"] == ("AC1", "secret")
    assert kwargs["timeout"] == 3


@pytest.mark.parametrize("session", [
    FakeSession(error=requests.ConnectionError("connection refused")),
    FakeSession(response=FakeResponse(status_code=400)),
])
def test_twilio_failures_become_delivery_errors(session):
    channel = TwilioWhatsAppChannel(
        account_sid="AC1", auth_token="secret", from_number="+15550000", provider="twilio", session=session
    )
    with pytest.raises(DeliveryError):
        channel.send("+15550001", None, "Hi")


class NonJsonResponse(FakeResponse):
    def json(self):
        raise ValueError("Expecting value: line 1 column 1 (char 0)")


def test_twilio_accepted_send_with_unreadable_body_still_counts_as_sent():
    session = FakeSession(response=NonJsonResponse())
    channel = TwilioWhatsAppChannel(
        account_sid="AC1", auth_token="secret", from_number="+15550000", provider="twilio", session=session
    )

    assert channel.send("+15550001", None, "Hi") == {"mode": "twilio", "provider_id": None}


def test_channel_adapter_requires_send():
    class Silent(ChannelAdapter):
        name = "silent"

    with pytest.raises(TypeError):
        Silent()


def test_form_field_provider_requires_get_fields():
    class NoFields(FormFieldProvider):
        pass

    with pytest.raises(TypeError):
        NoFields()
