"""ドメイン例外

API層では DonationError を {"detail": reason} に変換する。
reason は利用者に返してよい文言のみを持つ (内部例外の文字列は入れない)。
"""


class DonationError(Exception):
    """定期寄付ドメインの基底例外"""

    status_code = 400

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ValidationError(DonationError):
    """作成・更新時の入力不正 (リトライ不可)"""

    status_code = 422


class NotFound(DonationError):
    status_code = 404


class Forbidden(DonationError):
    """呼び出し元が所有者ではない"""

    status_code = 403


class InvalidStateTransition(DonationError):
    """状態遷移表にない操作"""

    status_code = 409

    def __init__(self, reason: str, current_status: str = None):
        super().__init__(reason)
        self.current_status = current_status


class AlreadyTerminal(InvalidStateTransition):
    """キャンセル済み (終端状態) への操作"""


class GatewayFailure(DonationError):
    """決済ゲートウェイでの失敗 (スケジューラ内で回復処理する)"""

    status_code = 502


class StoreFailure(DonationError):
    """永続化層での失敗 (スケジューラ内で購読単位に隔離する)"""

    status_code = 503
