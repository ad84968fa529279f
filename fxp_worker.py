# Runs one FXP transfer off the GUI thread

from PyQt5.QtCore import QThread, pyqtSignal

from fxp_transfer import VARIANTS, fxp_transfer

class FXPTransferWorker(QThread):
    """Worker for FXP (File eXchange Protocol) transfers between two FTP servers"""
    status_updated = pyqtSignal(str)
    outcome_ready = pyqtSignal(object) # TransferOk / SourceFailed / DestinationFailed / NegotiationFailed
    operation_completed = pyqtSignal(bool, str)

    def __init__(self, source, destination, variant='cpsv', completion_timeout=None):
        super().__init__()
        if variant not in VARIANTS:
            raise ValueError(f"Unknown FXP variant: {variant}")
        self.source = source # TransferEndpoint
        self.destination = destination # TransferEndpoint
        self.variant = variant
        self.completion_timeout = completion_timeout

    def run(self):
        self.status_updated.emit(f"Initiating FXP transfer ({self.variant.upper()}) "
                                 f"{self.source.describe()} -> {self.destination.describe()}...")
        try:
            outcome = fxp_transfer(self.source, self.destination, self.variant, self.completion_timeout)
        except Exception as e:
            self.operation_completed.emit(False, f"FXP transfer failed: {e}")
            return
        self.outcome_ready.emit(outcome)
        self.operation_completed.emit(outcome.ok, outcome.describe())
