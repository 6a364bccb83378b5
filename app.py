import streamlit as st
from ra_evaluator import ExpressionBuilder, RelAlgError, STRATEGIES, pretty, to_csv

st.set_page_config(page_title="RA Evaluator: Builder Walkthrough", page_icon="🧮", layout="wide")

START_ROWS = [(1, "a"), (2, "b"), (3, "c")]
PRODUCT_ROWS = [1, 2]
JOIN_ROWS = [(1, "Join1"), (2, "Join2")]
UNION_ROWS = [("d", 3, "Union")]
INTERSECT_ROWS = [("c", 1, "Join1"), ("c", 2, "Join2"), ("d", 3, "Union"), ("e", 4, "Removed")]

if "threshold" not in st.session_state:
    st.session_state.threshold = 1
if "strategy" not in st.session_state:
    st.session_state.strategy = "hash"


def build_stages(threshold: int, strategy: str):
    """Every intermediate builder of the walkthrough chain, labelled."""
    stages = [("Terminal", ExpressionBuilder.from_rows(START_ROWS))]

    def step(label, fn):
        stages.append((label, fn(stages[-1][1])))

    step(f"σ x.0 > {threshold}", lambda b: b.select(lambda x: x[0] > threshold))
    step("π x.1", lambda b: b.project(lambda x: x[1]))
    step("× [1, 2]", lambda b: b.cartesian_product(PRODUCT_ROWS, lambda x, y: (x, y)))
    step("⋈ x.1 = y.0", lambda b: b.join(JOIN_ROWS, lambda x, y: x[1] == y[0], lambda x, y: (x[0], y[0], y[1])))
    step("⋃ Union rows", lambda b: b.union(UNION_ROWS))
    step("∩ Expected rows", lambda b: b.intersect(INTERSECT_ROWS, strategy))
    return stages


def _table(rows):
    return [dict(zip(["c%d" % i for i in range(len(r))], r)) if isinstance(r, tuple) else {"value": r} for r in rows]


st.title("🧮 RA Evaluator — Builder Walkthrough")
st.write(
    "Builds one expression with the fluent builder, one operation at a time, and evaluates every "
    "intermediate stage. Supports σ (select), π (project), × (product), ⋈ (join), ⋃, ∩, −."
)

col1, col2 = st.columns([1, 1], gap="large")
with col1:
    st.number_input("Selection threshold", step=1, key="threshold", help="Rows with x.0 above this value are kept.")
with col2:
    st.selectbox("Intersection strategy", STRATEGIES, key="strategy")

with st.expander("📚 Input relations"):
    for name, rows in [("Start", START_ROWS), ("Product", PRODUCT_ROWS), ("Join", JOIN_ROWS),
                       ("Union", UNION_ROWS), ("Intersect", INTERSECT_ROWS)]:
        st.markdown(f"**{name}** — _rows: {len(rows)}_")
        st.code(pretty(rows), language="text")

if st.button("▶️ Run", type="primary"):
    try:
        stages = build_stages(int(st.session_state.threshold), st.session_state.strategy)
        result = stages[-1][1].eval()
        st.success("Expression evaluated successfully!")

        tabs = st.tabs(["Result Table", "Result Text", "Stages"])
        with tabs[0]:
            if result:
                st.table(_table(result))
                st.download_button("Download CSV", data=to_csv(result), file_name="result.csv", mime="text/csv")
            else:
                st.info("Empty result set.")
        with tabs[1]:
            st.code(pretty(result), language="text")
        with tabs[2]:
            for label, builder in stages:
                st.markdown(f"**{label}**")
                st.code(repr(builder.expression), language="text")
                st.code(pretty(builder.eval()), language="text")

    except RelAlgError as e:
        st.error(f"{type(e).__name__}: {e}")
    except Exception as e:
        st.exception(e)
else:
    st.info("Press Run to evaluate the chain.")
