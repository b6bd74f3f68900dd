#Expose the high-level pipeline pieces:
#Candidate scoring / ranking
#Offer queue (hard rules)
#Offer dispatcher (the per-order state machine)
#The service facade lives in dispatch.service and is imported explicitly,
#since it pulls in the stores (which themselves import dispatch.exceptions).

from .scoring import CandidateScore, score_candidates
from .candidate_filter import build_offer_queue
from .dispatcher import OfferDispatcher #the object that runs one offer cycle per order

__all__ = [
    "CandidateScore",
    "score_candidates",
    "build_offer_queue",
    "OfferDispatcher",
]
