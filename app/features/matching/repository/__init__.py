from .matching_repository import MatchingRepository, MatchingRepositoryError

__all__ = ["MatchingRepository", "MatchingRepositoryError"]
