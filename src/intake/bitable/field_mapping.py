"""Submission -> Bitable record field mapping.

Defines:
- ROLE_LABELS / ID_TYPE_LABELS: Stored codes to the labels shown in Bitable.
- BUSINESS_TYPE_LABEL_MAP / DEPARTMENT_LABEL_MAP: Short or legacy form
  labels to the canonical option labels of the Bitable columns.
- build_bitable_fields(): Pure mapping from a submission to a flat
  ``{column name: str}`` dict, keyed by the configured column names.
- FieldMapper: Adds single-select option resolution against the live
  table schema.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING

import structlog

from src.intake.bitable.select import apply_single_select_mappings
from src.intake.core.logging import id_suffix
from src.intake.submissions.schemas import SensitiveFields, SubmissionRecord

if TYPE_CHECKING:
    from src.intake.bitable.client import BitableClient

logger = structlog.get_logger(__name__)


# ── Label Tables ───────────────────────────────────────────────────────────

ROLE_LABELS: dict[str, str] = {
    "industry": "我是食品行业相关从业者",
    "consumer": "我是消费者",
}

ID_TYPE_LABELS: dict[str, str] = {
    "cn_id": "中国居民身份证",
    "passport": "护照",
}

_FOOD_BRAND = "食品饮料品牌方（包括传统的食品加工企业、新兴品牌、以及各类食品、饮品、调味品等终端产品生产商）"

BUSINESS_TYPE_LABEL_MAP: dict[str, str] = {
    "食品相关品牌方": _FOOD_BRAND,
    "食品制造商": _FOOD_BRAND,
    "供应链服务商": "包装与设备公司（食品包装解决方案及生产设备的企业）",
    "咨询/营销/服务机构": "设计营销与咨询策划服务提供商（包括设计机构、品牌战略咨询、市场调研、数字营销等服务提供商）",
    "线下零售": "线下零售（包含大型连锁超市、精品超市、便利店、折扣店、仓储会员店、百货店、购物中心、品牌专卖店、集合店、无人便利店/超市、其他线下零售等）",
    "线上零售": "线上零售（包括综合电商、跨境电商、社交电商、社区团购、垂类电商、直播电商、精品电商、其他线上零售）",
    "新兴渠道": "新零售（前置仓到家、店仓到家、O2O、自动售货机等）",
    "进出口贸易": "进出口贸易（包含进出口/贸易、批发商、大宗团购、酒商、经销商/代理商）",
    "餐饮及酒店": "餐饮及酒店（包含餐厅、快餐连锁、咖啡吧/水吧、连锁茶饮、烘焙店、酒店等）",
    # A bare "其他" is a substring of several options; pin it explicitly.
    "其他": "其他（包含政府机构、协会、高校、媒体等等）",
}

DEPARTMENT_LABEL_MAP: dict[str, str] = {
    "高管/战略": "高管、战略部门",
    "研发/生产/品控": "研发、产品、包装",
    "采购/物流/仓储": "采购、供应链、生产",
    "采购/市场/生产": "采购、供应链、生产",
    "市场/销售/电商": "渠道、销售、电商",
    "行政": "其他（如财务、行政等）",
    "其他": "其他（如财务、行政等）",
}

SYNC_STATUS_LABEL = "已同步"


def normalize_business_type(value: str) -> str:
    return BUSINESS_TYPE_LABEL_MAP.get(value, value)


def normalize_department(value: str) -> str:
    return DEPARTMENT_LABEL_MAP.get(value, value)


# ── Mapping ────────────────────────────────────────────────────────────────


def build_bitable_fields(
    submission: SubmissionRecord,
    sensitive: SensitiveFields,
    field_map: Mapping[str, str],
) -> dict[str, str]:
    """Build the raw Bitable field payload for a submission.

    Args:
        submission: Stored submission.
        sensitive: Decrypted phone and identifier number.
        field_map: Attribute -> column name. Attributes without a column
            are omitted from the payload.

    Returns:
        Flat ``{column name: value}`` dict; every value is a string.
    """
    fields: dict[str, str] = {}

    def put(attr: str, value: str | None) -> None:
        column = field_map.get(attr)
        if column and value:
            fields[column] = value

    for attr, value in (
        ("name", submission.name),
        ("phone", sensitive.phone),
        ("title", submission.title),
        ("company", submission.company),
        ("id_number", sensitive.id_number),
    ):
        column = field_map.get(attr)
        if column:
            fields[column] = value or ""

    put("role", ROLE_LABELS.get(submission.role))
    if submission.id_type:
        put("id_type", ID_TYPE_LABELS.get(submission.id_type))
    if submission.business_type:
        put("business_type", normalize_business_type(submission.business_type))
    if submission.department:
        put("department", normalize_department(submission.department))
    if submission.proof_urls:
        put("proof", ",".join(url for url in submission.proof_urls if url))
    if submission.created_at is not None:
        put("submitted_at", submission.created_at.isoformat())
    put("sync_status", SYNC_STATUS_LABEL)

    return fields


class FieldMapper:
    """Builds the final record payload, resolving single-select options.

    May refresh the client's field-metadata cache (a network call) when
    it is cold or expired; a failed refresh propagates to the caller.

    Args:
        client: BitableClient providing the current table schema.
        field_map: Attribute -> column name mapping from Settings.field_map().
    """

    def __init__(self, client: BitableClient, field_map: Mapping[str, str]) -> None:
        self._client = client
        self._field_map = dict(field_map)

    async def map_submission(
        self,
        submission: SubmissionRecord,
        sensitive: SensitiveFields,
    ) -> dict[str, str]:
        raw = build_bitable_fields(submission, sensitive, self._field_map)
        meta_by_name = await self._client.get_field_meta_by_name()
        fields = apply_single_select_mappings(
            raw,
            meta_by_name,
            trace_id=submission.trace_id,
            id_suffix=id_suffix(sensitive.id_number),
        )

        logger.debug(
            "bitable.fields_mapped",
            trace_id=submission.trace_id,
            submission_id=submission.id,
            field_count=len(fields),
            dropped=len(raw) - len(fields),
        )
        return fields
