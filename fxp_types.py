# Reply, address and result types passed between the FXP modules

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from fxp_errors import FXPDestinationError, FXPSourceError, NegotiationError

TRANSFER_COMPLETE = '226'
STATUS_BANNER = '213' # STAT -l framing lines

_PARENTHESIZED = re.compile(r'\(([^)]*)\)')
_BARE_TUPLE = re.compile(r'(\d+(?:,\d+)+)')
_COMPONENT = re.compile(r'\d{1,3}', re.ASCII)


@dataclass(frozen=True)
class StatusResponse:
    """One reply from a control connection, possibly spanning several lines."""
    text: str

    @property
    def lines(self):
        return self.text.splitlines()

    @property
    def first_line(self):
        lines = self.lines
        return lines[0] if lines else ''

    @property
    def code(self):
        return self.text[:3]

    @property
    def is_preliminary(self):
        return self.code[:1] == '1'

    @property
    def is_success(self):
        return self.code[:1] == '2'

    @property
    def is_transfer_complete(self):
        # 226 specifically, other 2xx codes do not count
        return self.code == TRANSFER_COMPLETE

    def __str__(self):
        return self.text


@dataclass(frozen=True)
class AddressPort:
    """The h1,h2,h3,h4,p1,p2 tuple from a PASV/CPSV reply, re-encoded for PORT."""
    fields: tuple

    @classmethod
    def parse(cls, spec):
        parts = spec.strip().split(',')
        if len(parts) != 6:
            raise NegotiationError(f"Expected 6 address/port components, got {len(parts)}: {spec!r}")
        for part in parts:
            if not _COMPONENT.fullmatch(part):
                raise NegotiationError(f"Non-numeric address/port component {part!r} in {spec!r}")
        values = tuple(int(part) for part in parts)
        if any(value > 255 for value in values):
            raise NegotiationError(f"Address/port component out of range in {spec!r}")
        return cls(values)

    @classmethod
    def from_reply(cls, response):
        """Extract the tuple from a 227-style reply; refuses non-2xx replies."""
        if not response.is_success:
            raise NegotiationError(f"Passive port request refused: {response.first_line}", response)
        text = response.first_line
        match = _PARENTHESIZED.search(text) or _BARE_TUPLE.search(text[4:])
        if not match:
            raise NegotiationError(f"No address/port tuple in reply: {text}", response)
        try:
            return cls.parse(match.group(1))
        except NegotiationError as e:
            e.response = response
            raise

    @property
    def host(self):
        return '.'.join(str(value) for value in self.fields[:4])

    @property
    def port(self):
        return self.fields[4] * 256 + self.fields[5]

    def to_port_argument(self):
        return ','.join(str(value) for value in self.fields)

    def __str__(self):
        return self.to_port_argument()


@dataclass(frozen=True)
class TransferEndpoint:
    """One side of an FXP operation: a session and a path on that server."""
    session: Any
    path: str

    def describe(self):
        return f"{self.session.host}:{self.path}"


@dataclass(frozen=True)
class TransferResult:
    source_response: StatusResponse
    destination_response: StatusResponse

    @property
    def is_complete(self):
        return (self.source_response is not None and self.destination_response is not None
                and self.source_response.is_transfer_complete
                and self.destination_response.is_transfer_complete)


class TransferState(Enum):
    IDLE = 'idle'
    NEGOTIATED = 'negotiated'
    TRANSFERRING = 'transferring'
    COMPLETE = 'complete'
    SRC_FAILED = 'source_failed'
    DST_FAILED = 'destination_failed'
    NEGOTIATION_FAILED = 'negotiation_failed'


# Tagged transfer outcomes. Callers match on the class instead of catching
# exception subtypes; unwrap() is there for callers that want exceptions.

@dataclass(frozen=True)
class TransferOk:
    result: TransferResult
    ok = True

    def describe(self):
        return (f"FXP transfer completed: source '{self.result.source_response.first_line}', "
                f"destination '{self.result.destination_response.first_line}'")

    def unwrap(self):
        return self.result


@dataclass(frozen=True)
class SourceFailed:
    """The source server failed.

    If it refused RETR, destination_response is None and the destination
    still owes the final reply to its STOR. Read it or close that session.
    """
    response: Optional[StatusResponse]
    destination_response: Optional[StatusResponse] = None
    error: Optional[BaseException] = None
    ok = False

    def describe(self):
        reason = self.response.first_line if self.response is not None else self.error
        return f"FXP transfer failed on source site: {reason}"

    def unwrap(self):
        raise FXPSourceError(self.describe(), self.response, self.destination_response) from self.error


@dataclass(frozen=True)
class DestinationFailed:
    response: Optional[StatusResponse]
    source_response: Optional[StatusResponse] = None
    error: Optional[BaseException] = None
    ok = False

    def describe(self):
        reason = self.response.first_line if self.response is not None else self.error
        return f"FXP transfer failed on destination site: {reason}"

    def unwrap(self):
        raise FXPDestinationError(self.describe(), self.response, self.source_response) from self.error


@dataclass(frozen=True)
class NegotiationFailed:
    reason: str
    response: Optional[StatusResponse] = None
    ok = False

    def describe(self):
        return f"FXP negotiation failed: {self.reason}"

    def unwrap(self):
        raise NegotiationError(self.describe(), self.response)
