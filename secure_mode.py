# TLS state of one control session: AUTH, PBSZ, PROT, CCC, SSCN, CPSV
# and the wrapping of data connections.
#
# Servers known to support SSCN: glftpd, surgeftp, Gene6, RaidenFTPD, Serv-U
# Servers known to support CPSV: glftpd, surgeftp, vsftpd, ioftpd, RaidenFTPD
# (Serv-U does not support CPSV)

import logging
import ssl
from enum import Enum

from fxp_errors import SecureModeError

logger = logging.getLogger(__name__)


class TLSMode(Enum):
    TLS = 'TLS'
    SSL = 'SSL'


class ProtectionLevel(Enum):
    # For TLS the data connection can only be C or P
    PRIVATE = 'P' # integrity and privacy
    CONFIDENTIAL = 'E' # privacy without integrity
    SAFE = 'S' # integrity without privacy
    CLEAR = 'C' # neither


class DataRole(Enum):
    CLIENT = 'client'
    SERVER = 'server'


class SecureModeController:
    """Tracks and changes the TLS state of one ControlSession.

    Control channel and data channel protection are tracked separately:
    `control_secure` says whether the control socket is TLS, the PROT level
    says whether data connections are TLS. CCC only touches the former.
    Attaching a controller makes it the session's `secure_mode`.
    """

    def __init__(self, session):
        self.session = session
        self.control_secure = False
        self.protection_level = None
        self.sscn_enabled = None # None until SSCN is toggled on this session
        self._client_context = None
        session.secure_mode = self

    @property
    def data_secure(self):
        return self.protection_level is not None and self.protection_level is not ProtectionLevel.CLEAR

    @property
    def secure(self):
        """The flag the data connection wrapper consults."""
        return self.data_secure

    def create_ssl_context(self, role):
        opts = self.session.options
        if role is DataRole.SERVER:
            if not opts.client_cert:
                raise SecureModeError("Acting as TLS server on a data connection needs client_cert and client_key")
            ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        elif opts.verify_certificates:
            ctx = ssl.create_default_context(ssl.Purpose.SERVER_AUTH)
        else:
            # Opt-in: no certificate or hostname checks at all
            ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
            ctx.check_hostname = False
            ctx.verify_mode = ssl.CERT_NONE
        if opts.client_cert:
            try:
                ctx.load_cert_chain(opts.client_cert, opts.client_key)
            except (OSError, ssl.SSLError) as e:
                raise SecureModeError(f"Could not load certificate {opts.client_cert}: {e}") from e
        return ctx

    def _context_for(self, role):
        # Client-role data connections reuse the control channel's context so
        # its TLS session can be resumed.
        if role is DataRole.SERVER:
            return self.create_ssl_context(role)
        if self._client_context is None:
            self._client_context = self.create_ssl_context(DataRole.CLIENT)
        return self._client_context

    def negotiate_tls(self, username='anonymous', password='', account='', mode=TLSMode.TLS):
        """AUTH TLS/SSL, handshake as client, login, then PBSZ 0 and PROT P."""
        mode = TLSMode(mode)
        session = self.session
        with session.lock:
            session.send_void_command(f'AUTH {mode.value}')
            ctx = self._context_for(DataRole.CLIENT)
            try:
                sock = ctx.wrap_socket(session.ftp.sock, server_hostname=session.host)
            except (ssl.SSLError, OSError) as e:
                raise SecureModeError(f"TLS handshake with {session.host} failed: {e}") from e
            session.rebind_socket(sock)
            self.control_secure = True
            if session.options.debug:
                logger.debug("%s: negotiated %s with cipher %s", session.host, sock.version(), sock.cipher())

            # The handshake says nothing about the credentials
            session.login(username, password, account)

            # Not used by TLS but still required before PROT
            self.set_protection_buffer_size(0)
            self.set_protection_level(ProtectionLevel.PRIVATE)
        logger.info("%s: control channel secured with AUTH %s", session.host, mode.value)

    def set_protection_buffer_size(self, size=0):
        return self.session.send_void_command(f'PBSZ {int(size)}')

    def set_protection_level(self, level):
        try:
            level = ProtectionLevel(level)
        except ValueError:
            raise SecureModeError(f"Unknown protection level: {level!r}") from None
        response = self.session.send_void_command(f'PROT {level.value}')
        self.protection_level = level
        return response

    def clear_command_channel(self):
        """Issue CCC. A refusal is returned as the server's reply, not raised.

        Data channel protection is left as it is.
        """
        session = self.session
        with session.lock:
            response = session.send_command('CCC')
            if not response.is_success:
                logger.info("%s refused CCC: %s", session.host, response.first_line)
                return response
            sock = session.ftp.sock
            if isinstance(sock, ssl.SSLSocket):
                try:
                    session.rebind_socket(sock.unwrap())
                except (ssl.SSLError, OSError) as e:
                    raise SecureModeError(f"Could not shut down TLS on {session.host}: {e}") from e
            self.control_secure = False
        logger.info("%s: control channel is now plaintext", session.host)
        return response

    def toggle_sscn(self, on):
        """SSCN ON makes the server the TLS client of the data handshake, OFF (the default) the TLS server."""
        if self.protection_level is not ProtectionLevel.PRIVATE:
            raise SecureModeError(f"SSCN requires PROT P on {self.session.host}")
        response = self.session.send_void_command('SSCN ON' if on else 'SSCN OFF')
        self.sscn_enabled = bool(on)
        return response

    def negotiate_passive_data_port(self):
        """
        CPSV: same reply as PASV, but the listening server will not start the
        TLS handshake itself. The connecting side (PROT P + PORT) does.
        """
        return self.session.send_command('CPSV')

    def data_role(self):
        """Our role in the TLS handshake of a data connection to this server.

        SSCN ON makes us the TLS server. SSCN OFF is the server's default, so
        it resolves exactly like a session that never sent SSCN: the role
        follows the transfer mode.
        """
        if self.sscn_enabled:
            return DataRole.SERVER
        return DataRole.CLIENT if self.session.passive else DataRole.SERVER

    def _control_tls_session(self):
        sock = self.session.ftp.sock
        if self.control_secure and isinstance(sock, ssl.SSLSocket):
            return sock.session
        return None

    def wrap_data_connection(self, sock, role=None):
        if not self.data_secure:
            return sock
        role = DataRole(role) if role is not None else self.data_role()
        ctx = self._context_for(role)
        try:
            if role is DataRole.SERVER:
                return ctx.wrap_socket(sock, server_side=True)
            return ctx.wrap_socket(sock, server_hostname=self.session.host,
                                   session=self._control_tls_session())
        except (ssl.SSLError, OSError) as e:
            raise SecureModeError(f"Data connection handshake with {self.session.host} failed ({role.value} role): {e}") from e
