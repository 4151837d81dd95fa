"""Challenge coordination between the authority client and the host."""

from certkeeper.challenge.coordinator import ChallengeCoordinator, ChallengeResponse

__all__ = ["ChallengeCoordinator", "ChallengeResponse"]
