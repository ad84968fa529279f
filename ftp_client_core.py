import ftplib
import logging
import threading

from fxp_config import SessionOptions
from fxp_errors import FXPConnectionError, FXPAuthenticationError, ProtocolError
from fxp_types import StatusResponse
from secure_mode import SecureModeController, TLSMode

logger = logging.getLogger(__name__)


class ControlSession:
    """One FTP control connection.

    Every command/reply pair runs under the session's own lock, so only one
    command is in flight per session. Two sessions never share a lock, which
    lets an FXP transfer wait on both servers at the same time.

    TLS handling is not part of the session: a SecureModeController attaches
    itself as `secure_mode` and is consulted when data connections are opened.
    """

    def __init__(self, ftp=None, options=None):
        self.options = options or SessionOptions()
        self.ftp = ftp if ftp is not None else ftplib.FTP()
        self.lock = threading.RLock()
        self.transfer_lock = threading.Lock() # held while the session takes part in an FXP transfer
        self.secure_mode = None
        if self.ftp.file is not None:
            self._tolerate_undecodable_replies()
        self.ftp.set_pasv(self.options.passive)
        if self.options.debug:
            self.ftp.set_debuglevel(1)

    @property
    def host(self):
        return self.options.host or self.ftp.host

    @property
    def passive(self):
        return self.options.passive

    def set_passive(self, passive):
        self.options.passive = bool(passive)
        self.ftp.set_pasv(self.options.passive)

    @property
    def secure(self):
        """True when data connections will be TLS-wrapped."""
        return self.secure_mode is not None and self.secure_mode.secure

    def connect(self):
        opts = self.options
        try:
            if opts.timeout is not None:
                welcome = self.ftp.connect(opts.host, opts.port, timeout=opts.timeout)
            else:
                welcome = self.ftp.connect(opts.host, opts.port)
        except (OSError, EOFError, ftplib.Error) as e:
            raise FXPConnectionError(f"Could not connect to {opts.host}:{opts.port}: {e}") from e
        self._tolerate_undecodable_replies()
        logger.debug("Connected to %s:%s: %s", opts.host, opts.port, welcome)
        return StatusResponse(welcome)

    def login(self, username=None, password=None, account=None):
        opts = self.options
        username = username if username is not None else opts.username
        password = password if password is not None else opts.password
        account = account if account is not None else opts.account
        with self.lock:
            try:
                response = self.ftp.login(username or 'anonymous', password or '', account or '')
            except ftplib.Error as e:
                raise FXPAuthenticationError(f"Login failed for {username or 'anonymous'} on {self.host}: {e}") from e
            except (OSError, EOFError) as e:
                raise FXPConnectionError(f"Connection lost during login on {self.host}: {e}") from e
        logger.info("Logged in to %s as %s", self.host, username or 'anonymous')
        return StatusResponse(response)

    def send_command(self, line):
        """Send one command line and return the raw reply, whatever its code."""
        with self.lock:
            try:
                self.ftp.putcmd(line)
                response = StatusResponse(self.ftp.getmultiline())
            except (OSError, EOFError) as e:
                raise FXPConnectionError(f"Control connection to {self.host} failed on {line.split()[0]}: {e}") from e
            except UnicodeDecodeError as e:
                raise FXPConnectionError(f"Undecodable reply from {self.host} to {line.split()[0]}: {e}") from e
        logger.debug("%s: %s -> %s", self.host, line, response.first_line)
        return response

    def send_void_command(self, line):
        """Like send_command but the reply must be 2xx."""
        response = self.send_command(line)
        if not response.is_success:
            raise ProtocolError(f"{line.split()[0]} failed on {self.host}: {response.first_line}", response)
        return response

    def read_response(self, timeout=None):
        """Block until the next reply arrives on the control channel.

        With a timeout the socket read is bounded; expiry raises
        FXPConnectionError and leaves the session unusable.
        """
        with self.lock:
            sock = self.ftp.sock
            previous = sock.gettimeout() if (sock is not None and timeout is not None) else None
            if sock is not None and timeout is not None:
                sock.settimeout(timeout)
            try:
                response = StatusResponse(self.ftp.getmultiline())
            except (OSError, EOFError) as e:
                raise FXPConnectionError(f"No reply from {self.host}: {e!r}") from e
            except UnicodeDecodeError as e:
                raise FXPConnectionError(f"Undecodable reply from {self.host}: {e}") from e
            finally:
                if sock is not None and timeout is not None:
                    sock.settimeout(previous)
        logger.debug("%s: <- %s", self.host, response.first_line)
        return response

    def open_data_connection(self, cmd):
        """Open the data connection for `cmd`, TLS-wrapped when the data channel is protected.

        Returns (socket, expected size or None) like ftplib's ntransfercmd.
        """
        with self.lock:
            try:
                conn, size = self.ftp.ntransfercmd(cmd)
            except ftplib.Error as e:
                raise ProtocolError(f"{cmd.split()[0]} refused on {self.host}: {e}", StatusResponse(str(e))) from e
            if self.secure_mode is not None:
                try:
                    conn = self.secure_mode.wrap_data_connection(conn)
                except Exception:
                    conn.close()
                    raise
            return conn, size

    def rebind_socket(self, sock):
        """Swap the control socket, e.g. after AUTH or CCC."""
        with self.lock:
            self.ftp.sock = sock
            self.ftp.file = sock.makefile('r', encoding=self.ftp.encoding, errors='surrogateescape')

    def _tolerate_undecodable_replies(self):
        # Servers may answer in their own codepage (e.g. a Latin-1 file name in
        # a STAT listing). Undecodable bytes survive as surrogates.
        self.ftp.file.reconfigure(errors='surrogateescape')

    def close(self):
        with self.lock:
            try:
                self.ftp.quit()
            except (OSError, EOFError, ftplib.Error) as e:
                logger.debug("QUIT failed on %s, closing socket: %s", self.host, e)
                self.ftp.close()


def connect_plain_ftp(options):
    session = ControlSession(options=options)
    session.connect()
    session.login()
    logger.info("Connected via plain FTP to %s as %s", options.host, options.username or 'anonymous')
    return session

def connect_ftps(options):
    session = ControlSession(options=options)
    session.connect()
    controller = SecureModeController(session)
    mode = TLSMode.SSL if options.security == 'ssl' else TLSMode.TLS
    try:
        controller.negotiate_tls(options.username, options.password, options.account, mode=mode)
    except Exception:
        session.ftp.close()
        raise
    logger.info("Connected via FTPS (%s) to %s as %s", mode.value, options.host, options.username or 'anonymous')
    return session

def connect_server(options):
    """
    Primary connection function, dispatches on options.security.
    The returned session is connected and logged in.
    """
    logger.debug("connect_server called with: host=%s, port=%s, user=%s, sec=%s, passive=%s",
                 options.host, options.port, options.username, options.security, options.passive)
    if options.is_secure:
        return connect_ftps(options)
    return connect_plain_ftp(options)

def disconnect_session(session):
    if session:
        session.close()
        logger.info("Disconnected from %s", session.host)
