"""Domain services and external API clients"""
from .leaderboard_service import LeaderboardService
from .mt5_service import MT5Service
from .push_service import PushService
from .stripe_service import StripeService

__all__ = ['LeaderboardService', 'MT5Service', 'PushService', 'StripeService']
