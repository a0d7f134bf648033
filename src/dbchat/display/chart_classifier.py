"""결과 셋 차트 분류기.

고정 임계값 기반 휴리스틱이며 학습된 모델이 아니다.
행 수가 PIE_MAX_ROWS 이하면 pie, LINE_MIN_ROWS 초과면 line, 그 사이는 bar.
"""

import math
from collections.abc import Mapping
from typing import Any

from dbchat.core.models import ChartKind, ChartSpec, ResultSet


def _is_numeric(value: Any) -> bool:
    """값이 숫자이거나 전체가 float로 파싱되는 문자열인지 확인한다."""
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return not (isinstance(value, float) and math.isnan(value))
    if isinstance(value, str):
        if "_" in value:
            return False
        try:
            return not math.isnan(float(value))
        except ValueError:
            return False
    return False


def _to_float(value: Any) -> float:
    """float로 변환, 실패 시 0."""
    if isinstance(value, bool) or value is None:
        return 0.0
    if isinstance(value, str) and "_" in value:
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return 0.0 if math.isnan(number) else number


class ChartClassifier:
    """결과 셋의 시각화 여부와 차트 종류를 결정한다."""

    PIE_MAX_ROWS = 10
    LINE_MIN_ROWS = 20
    PIE_MAX_SLICES = 8

    def classify(self, rows: ResultSet | None) -> ChartSpec:
        """결과 셋을 분류한다.

        Args:
            rows: 결과 셋 (첫 행의 키 순서가 컬럼 순서)

        Returns:
            차트 분류 결과
        """
        if not rows or not isinstance(rows[0], Mapping):
            return ChartSpec.none()

        first_row = rows[0]
        columns = list(first_row.keys())
        numeric_columns = [col for col in columns if _is_numeric(first_row[col])]

        if len(numeric_columns) < 1 or len(columns) < 2:
            return ChartSpec.none()

        row_count = len(rows)
        if row_count <= self.PIE_MAX_ROWS:
            kind = ChartKind.PIE
        elif row_count > self.LINE_MIN_ROWS:
            kind = ChartKind.LINE
        else:
            kind = ChartKind.BAR

        label_column = columns[0]
        value_columns = tuple(col for col in columns[1:] if col in numeric_columns)

        return ChartSpec(
            kind=kind,
            label_column=label_column,
            value_columns=value_columns,
        )

    def pie_slices(self, rows: ResultSet, spec: ChartSpec) -> list[tuple[Any, float]]:
        """파이 차트 데이터를 생성한다.

        앞 PIE_MAX_SLICES개 행과 첫 번째 값 컬럼만 사용한다.

        Args:
            rows: 결과 셋
            spec: 분류 결과

        Returns:
            (라벨, 값) 튜플 리스트
        """
        if spec.kind is not ChartKind.PIE or not rows:
            return []

        value_column = spec.value_columns[0] if spec.value_columns else None
        return [
            (
                row.get(spec.label_column),
                _to_float(row.get(value_column)) if value_column else 0.0,
            )
            for row in rows[: self.PIE_MAX_SLICES]
        ]

    def series(
        self, rows: ResultSet, spec: ChartSpec
    ) -> tuple[list[Any], dict[str, list[float]]]:
        """막대/선 차트 데이터를 생성한다.

        Args:
            rows: 결과 셋
            spec: 분류 결과

        Returns:
            (라벨 리스트, 값 컬럼별 float 리스트) 튜플
        """
        if spec.kind not in (ChartKind.BAR, ChartKind.LINE) or not rows:
            return [], {}

        labels = [row.get(spec.label_column) for row in rows]
        values = {
            column: [_to_float(row.get(column)) for row in rows]
            for column in spec.value_columns
        }
        return labels, values
