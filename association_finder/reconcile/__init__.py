from .reconciler import Reconciler

__all__ = ['Reconciler']
