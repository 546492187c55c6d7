from .batch_scanner import BatchScanner, ScanSession

__all__ = ['BatchScanner', 'ScanSession']
