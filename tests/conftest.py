import asyncssh
import pytest


class FakeStream:
    """Records outbound SFTP replies; `ready` is what each write reports"""

    def __init__(self):
        self.sent = []
        self.ready = True

    def _record(self, kind, request_id, *payload):
        self.sent.append((kind, request_id) + payload)
        return self.ready

    def status(self, request_id, code, message=None):
        return self._record("status", request_id, code, message)

    def handle(self, request_id, token):
        return self._record("handle", request_id, token)

    def data(self, request_id, data):
        return self._record("data", request_id, data)

    def attrs(self, request_id, attrs):
        return self._record("attrs", request_id, attrs)

    def name(self, request_id, names):
        return self._record("name", request_id, names)


class FakeClient:
    def __init__(self):
        self.session = {}
        self.closed = False

    def close(self):
        self.closed = True


@pytest.fixture
def stream():
    return FakeStream()


@pytest.fixture
def client():
    return FakeClient()


@pytest.fixture
def host_key(tmp_path_factory):
    path = tmp_path_factory.mktemp("keys") / "ssh_host_key"
    asyncssh.generate_private_key('ssh-ed25519').write_private_key(str(path))
    return str(path)
