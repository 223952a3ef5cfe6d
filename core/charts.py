from __future__ import annotations

from typing import Any, Dict, List

import altair as alt
import pandas as pd

alt.data_transformers.disable_max_rows()

TYPE_COLORS = {"BEV": "#2563eb", "PHEV": "#f59e0b"}


def to_vega_spec(chart: alt.Chart) -> Dict[str, Any]:
    """Convert an Altair chart into a Vega-Lite spec dict (JSON-serializable)."""
    return chart.to_dict()


def _frame(rows: List[Dict[str, Any]], columns: List[str]) -> pd.DataFrame:
    return pd.DataFrame(rows, columns=columns)


def by_year_chart(rows: List[Dict[str, Any]]) -> alt.Chart:
    return (
        alt.Chart(_frame(rows, ["year", "count"]))
        .mark_area(line=True, opacity=0.35, interpolate="monotone")
        .encode(
            x=alt.X("year:O", title="Model Year", axis=alt.Axis(labelAngle=0, grid=False)),
            y=alt.Y("count:Q", title="Registrations", axis=alt.Axis(format="~s", gridDash=[4, 4])),
            tooltip=["year:O", alt.Tooltip("count:Q", format=",")],
        )
        .properties(height=260, title="Registrations by Model Year")
    )


def top_makes_chart(rows: List[Dict[str, Any]]) -> alt.Chart:
    return (
        alt.Chart(_frame(rows, ["name", "count"]))
        .mark_bar(cornerRadiusTopLeft=4, cornerRadiusTopRight=4)
        .encode(
            x=alt.X("name:N", sort=None, title=None, axis=alt.Axis(labelAngle=-25)),
            y=alt.Y("count:Q", title="Vehicles", axis=alt.Axis(format="~s")),
            tooltip=["name:N", alt.Tooltip("count:Q", format=",")],
        )
        .properties(height=260, title="Top Manufacturers")
    )


def type_split_chart(rows: List[Dict[str, Any]]) -> alt.Chart:
    return (
        alt.Chart(_frame(rows, ["name", "value"]))
        .mark_arc(outerRadius=80)
        .encode(
            theta=alt.Theta("value:Q"),
            color=alt.Color(
                "name:N",
                title="Type",
                scale=alt.Scale(domain=list(TYPE_COLORS), range=list(TYPE_COLORS.values())),
            ),
            tooltip=["name:N", alt.Tooltip("value:Q", format=",")],
        )
        .properties(height=260, title="BEV vs PHEV")
    )


def cafv_chart(rows: List[Dict[str, Any]]) -> alt.Chart:
    return (
        alt.Chart(_frame(rows, ["name", "value"]))
        .mark_bar()
        .encode(
            x=alt.X("name:N", sort=None, title=None, axis=alt.Axis(labelAngle=-20, labelLimit=220)),
            y=alt.Y("value:Q", title="Vehicles", axis=alt.Axis(format="~s")),
            tooltip=["name:N", alt.Tooltip("value:Q", format=",")],
        )
        .properties(height=260, title="CAFV Eligibility (filtered)")
    )
