"""
RTC Module

Re-exports the peer connection manager.
"""
from .peer import PeerConnectionManager, candidates_from_sdp, parse_candidate

__all__ = ["PeerConnectionManager", "candidates_from_sdp", "parse_candidate"]
