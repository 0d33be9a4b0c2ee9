"""キャンペーン参照 (読み取り専用)"""
from typing import Optional
from sqlalchemy.orm import Session

from giving.core.exceptions import ValidationError
from giving.models.campaign import Campaign


def resolve_campaign(
    db: Session,
    campaign_id: Optional[int],
    campaign_code: Optional[str],
) -> tuple[Optional[int], Optional[str]]:
    """
    定期寄付に紐付けるキャンペーンを解決

    - campaign_id 指定: 存在しなければ ValidationError。code 未指定ならキャンペーンの code を補完
    - campaign_code のみ: 一致するキャンペーンがあれば id を補完 (なければ code のみ保持)
    """
    if campaign_id is not None:
        campaign = db.query(Campaign).filter(Campaign.id == campaign_id).first()
        if not campaign:
            raise ValidationError("Campaign not found")
        return campaign.id, campaign_code or campaign.code

    if campaign_code:
        campaign = db.query(Campaign).filter(
            Campaign.code == campaign_code,
            Campaign.is_active == True,  # noqa: E712
        ).first()
        return (campaign.id if campaign else None), campaign_code

    return None, None


def get_campaign_title(db: Session, campaign_id: Optional[int]) -> Optional[str]:
    if campaign_id is None:
        return None
    campaign = db.query(Campaign).filter(Campaign.id == campaign_id).first()
    return campaign.title if campaign else None
