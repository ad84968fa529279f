# FTP/FXP extension commands issued on one ControlSession

import re

from fxp_types import AddressPort, STATUS_BANNER

_REGULAR_FILE = re.compile(r'-[r-][w-]') # '-rw-r--r--' style entry types


class FXPCommandSet:
    """Typed wrappers for the commands an FXP transfer needs.

    Each method holds the session lock for its command/reply pair(s) and
    returns the raw StatusResponse; interpreting the code is up to the caller
    unless stated otherwise.
    """

    def __init__(self, session):
        self.session = session

    def passive_port(self):
        """PASV. Parse the reply with AddressPort.from_reply."""
        return self.session.send_command('PASV')

    def active_port(self, address):
        """PORT with an AddressPort or an already encoded h1,h2,h3,h4,p1,p2 string; must be 2xx."""
        if isinstance(address, str):
            address = AddressPort.parse(address)
        return self.session.send_void_command(f'PORT {address.to_port_argument()}')

    def prepare_store(self, path):
        """Call on the destination, before prepare_retrieve on the source."""
        with self.session.lock:
            self.session.send_void_command('TYPE I')
            return self.session.send_command(f'STOR {path}')

    def prepare_retrieve(self, path):
        """Call on the source, after prepare_store on the destination."""
        with self.session.lock:
            self.session.send_void_command('TYPE I')
            return self.session.send_command(f'RETR {path}')

    def await_transfer_completion(self, timeout=None):
        # 226 Transfer complete on the source, 226 File receive OK on the destination
        return self.session.read_response(timeout)

    def extended_features(self):
        return self.session.send_command('FEAT')

    def extended_dupe_mode(self, mode=None):
        """
        SITE XDUPE. Without a mode the server reports the current one.
        mode=0: disabled
        mode=1: several file names per X-DUPE line
        mode=2: one file name per X-DUPE line
        mode=3: one file name per X-DUPE line, no truncation
        mode=4: all files in one line of up to 1024 characters
        """
        if mode is None:
            return self.session.send_command('SITE XDUPE')
        return self.session.send_command(f'SITE XDUPE {int(mode)}')

    def fast_list(self, path=None):
        """STAT -l, a lighter LIST that needs no data connection."""
        if path is None:
            return self.session.send_command('STAT -l')
        return self.session.send_command(f'STAT -l {path}')

    def _listing_entries(self, path):
        response = self.fast_list(path)
        if not response.is_success:
            return []
        entries = []
        for line in response.lines:
            if line[:3] == STATUS_BANNER: # skip the 213- / 213 framing lines
                continue
            entries.append(line.lstrip())
        return entries

    def file_exists(self, path):
        return any(_REGULAR_FILE.match(entry) for entry in self._listing_entries(path))

    def path_exists(self, path):
        return any(entry for entry in self._listing_entries(path))
