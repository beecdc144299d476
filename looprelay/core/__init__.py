"""Core services: acquisition and transport chains, relay job, relay loop."""
from looprelay.core.acquisition import AcquisitionChain
from looprelay.core.relay_loop import RelayLoop
from looprelay.core.transport import TransportChain

__all__ = ["AcquisitionChain", "RelayLoop", "TransportChain"]
