"""User behavior tracking and next-route prediction."""

from warmcache.behavior.predictor import BehaviorPredictor

__all__ = ["BehaviorPredictor"]
