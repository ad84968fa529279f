# FXP (Server-to-Server) Transfer Implementation
# The file bytes flow directly between the two FTP servers; this module only
# drives the two control connections.

import logging
from concurrent.futures import ThreadPoolExecutor

from fxp_commands import FXPCommandSet
from fxp_errors import FXPConnectionError, ProtocolError, SecureModeError
from fxp_types import (AddressPort, DestinationFailed, NegotiationFailed, SourceFailed,
                       TransferOk, TransferResult, TransferState)
from secure_mode import ProtectionLevel

logger = logging.getLogger(__name__)

VARIANTS = ('pasv', 'cpsv', 'sscn')


def _secure_mode_of(session):
    if session.secure_mode is None:
        raise SecureModeError(f"{session.host} has no secure mode controller attached")
    return session.secure_mode


def _result_of(future):
    try:
        return future.result(), None
    except FXPConnectionError as e:
        return None, e


class FXPCoordinator:
    """Transfers files from `source` to a destination session.

    Both sessions must already be connected and logged in; the coordinator
    borrows them for one call and never opens, closes or re-authenticates
    them. Every transfer returns one of TransferOk, SourceFailed,
    DestinationFailed or NegotiationFailed. Nothing is retried.

    completion_timeout bounds each side's wait for its final reply. A side
    that times out counts as failed and its session should be closed.

    When the source refuses RETR after the destination accepted STOR, the
    destination's final STOR reply is still pending on its control channel.
    The caller must read it (read_response) or close that session before
    issuing another command on it.
    """

    def __init__(self, source, completion_timeout=None):
        self.source = source
        self.completion_timeout = completion_timeout
        self.state = TransferState.IDLE

    def transfer(self, destination, destination_path, source_path):
        """Plain FXP with PASV on the source and PORT on the destination."""
        return self.run(destination, destination_path, source_path, 'pasv')

    def transfer_via_cpsv(self, destination, destination_path, source_path):
        """Secure FXP using CPSV. Do not use while SSCN is on for the source."""
        return self.run(destination, destination_path, source_path, 'cpsv')

    def transfer_via_sscn(self, destination, destination_path, source_path):
        """
        Secure FXP using SSCN: the source acts as TLS server, the destination
        as TLS client, and the source is asked for its port with PASV.
        """
        return self.run(destination, destination_path, source_path, 'sscn')

    def _set_state(self, state):
        logger.debug("FXP %s: %s -> %s", self.source.host, self.state.value, state.value)
        self.state = state

    def _fail(self, outcome):
        if isinstance(outcome, SourceFailed):
            self._set_state(TransferState.SRC_FAILED)
        elif isinstance(outcome, DestinationFailed):
            self._set_state(TransferState.DST_FAILED)
        else:
            self._set_state(TransferState.NEGOTIATION_FAILED)
        logger.warning(outcome.describe())
        return outcome

    def run(self, destination, destination_path, source_path, variant):
        if variant not in VARIANTS:
            raise ValueError(f"Unknown FXP variant: {variant}")
        self.state = TransferState.IDLE
        if destination is self.source:
            return self._fail(NegotiationFailed("source and destination must be different sessions"))

        # A session joins at most one transfer at a time
        if not self.source.transfer_lock.acquire(blocking=False):
            return self._fail(NegotiationFailed(f"{self.source.host} is busy with another transfer"))
        try:
            if not destination.transfer_lock.acquire(blocking=False):
                return self._fail(NegotiationFailed(f"{destination.host} is busy with another transfer"))
            try:
                return self._transfer(destination, destination_path, source_path, variant)
            finally:
                destination.transfer_lock.release()
        finally:
            self.source.transfer_lock.release()

    def _transfer(self, destination, destination_path, source_path, variant):
        src = FXPCommandSet(self.source)
        dst = FXPCommandSet(destination)
        logger.info("FXP (%s) %s:%s -> %s:%s", variant.upper(), self.source.host, source_path,
                    destination.host, destination_path)

        negotiate = getattr(self, f'_negotiate_{variant}')
        try:
            address = AddressPort.from_reply(negotiate(destination))
            dst.active_port(address)
        except (ProtocolError, SecureModeError, FXPConnectionError) as e:
            return self._fail(NegotiationFailed(str(e), getattr(e, 'response', None)))
        self._set_state(TransferState.NEGOTIATED)

        # The destination must be ready to receive before the source sends
        try:
            store = dst.prepare_store(destination_path)
        except (ProtocolError, FXPConnectionError) as e:
            return self._fail(DestinationFailed(getattr(e, 'response', None), error=e))
        if not store.is_preliminary:
            return self._fail(DestinationFailed(store))

        try:
            retrieve = src.prepare_retrieve(source_path)
        except (ProtocolError, FXPConnectionError) as e:
            return self._fail(SourceFailed(getattr(e, 'response', None), error=e))
        # The destination's STOR reply stays pending, see the class docstring
        if not retrieve.is_preliminary:
            return self._fail(SourceFailed(retrieve))
        self._set_state(TransferState.TRANSFERRING)

        (source_response, source_error), (destination_response, destination_error) = self._await_both(src, dst)
        if source_error is not None or not source_response.is_transfer_complete:
            return self._fail(SourceFailed(source_response, destination_response, source_error))
        if destination_error is not None or not destination_response.is_transfer_complete:
            return self._fail(DestinationFailed(destination_response, source_response, destination_error))

        self._set_state(TransferState.COMPLETE)
        outcome = TransferOk(TransferResult(source_response, destination_response))
        logger.info(outcome.describe())
        return outcome

    def _await_both(self, src, dst):
        # Either server may finish first, so wait on both at once
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix='fxp-wait') as pool:
            source_wait = pool.submit(src.await_transfer_completion, self.completion_timeout)
            destination_wait = pool.submit(dst.await_transfer_completion, self.completion_timeout)
            return _result_of(source_wait), _result_of(destination_wait)

    def _ensure_private(self, controller):
        if controller.protection_level is not ProtectionLevel.PRIVATE:
            controller.set_protection_level(ProtectionLevel.PRIVATE)

    def _negotiate_pasv(self, destination):
        return FXPCommandSet(self.source).passive_port()

    def _negotiate_cpsv(self, destination):
        controller = _secure_mode_of(self.source)
        if controller.sscn_enabled:
            raise SecureModeError(f"SSCN is on for {self.source.host}; CPSV and SSCN cannot be mixed")
        self._ensure_private(controller)
        return controller.negotiate_passive_data_port()

    def _negotiate_sscn(self, destination):
        controller = _secure_mode_of(self.source)
        peer = _secure_mode_of(destination)
        self._ensure_private(controller)
        controller.toggle_sscn(False) # we are the server side
        peer.toggle_sscn(True) # they are the client side
        return FXPCommandSet(self.source).passive_port()


def fxp_transfer(source, destination, variant='cpsv', completion_timeout=None):
    """Transfer between two TransferEndpoints with the given variant ('pasv', 'cpsv' or 'sscn')."""
    coordinator = FXPCoordinator(source.session, completion_timeout)
    return coordinator.run(destination.session, destination.path, source.path, variant)
