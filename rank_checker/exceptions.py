"""例外定義."""


class RankCheckerError(Exception):
    """順位チェッカーの基底例外."""


class ConfigurationError(RankCheckerError):
    """必須設定が欠けている."""


class ValidationError(RankCheckerError):
    """入力値が不正（副作用の前に検出される）."""


class ResolutionError(RankCheckerError):
    """順位を解決できなかった."""


class UnsupportedPlatformError(ResolutionError):
    """slot_type が既知のプラットフォームに対応しない."""


class PageLoadError(RankCheckerError):
    """検索ページの読み込みに失敗した."""


class TransactionError(RankCheckerError):
    """キューへの claim / commit 呼び出しが失敗した."""


class RotationError(RankCheckerError):
    """接続切替コマンドが失敗した."""
