import logging
import math
from typing import List, Optional

import matplotlib.pyplot as plt
from matplotlib.lines import Line2D
import numpy as np
import streamlit as st

from aco import AntColony
from control import ACOTSPControl, ControlError
from hooks import LocalEvaporation, TwoOpt
from tracing import RunResult
from tsp_instance import TSPInstance

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s: %(message)s")


def init_session_state() -> None:
    """Initialize all keys in Streamlit's session_state used by the app."""
    defaults = {
        "num_cities": 10,
        "seed": 42,
        "instance": None,
        "aco_result": None,
    }
    for key, value in defaults.items():
        if key not in st.session_state:
            st.session_state[key] = value


def regenerate_cities(num_cities: int, seed: int) -> None:
    """Generate a new TSP instance and store it in session_state."""
    st.session_state.instance = TSPInstance.random(num_cities, seed)
    st.session_state.aco_result = None


# ---------- helpers for drawing routes ----------


def draw_route_with_arrows(
    ax: plt.Axes,
    cities: np.ndarray,
    route: List[int],
    color: str,
    arrow_every: int = 1,
) -> None:
    """
    Draw a connected polyline with arrowheads along the closed route.

    Args:
        ax: Matplotlib axes to draw on.
        cities: Array of city coordinates.
        route: List of city indices (start city not repeated).
        color: Color for line and arrows.
        arrow_every: Draw an arrow on every Nth segment.
    """
    if len(route) < 2:
        return
    route_loop = list(route) + [route[0]]

    xs = [cities[i, 0] for i in route_loop]
    ys = [cities[i, 1] for i in route_loop]
    ax.plot(xs, ys, color=color, linewidth=2, alpha=0.9, zorder=2)

    for seg_idx in range(0, len(route_loop) - 1, arrow_every):
        x_start, y_start = cities[route_loop[seg_idx]]
        x_end, y_end = cities[route_loop[seg_idx + 1]]

        # place arrowhead a bit before the endpoint
        arrow_frac = 0.85
        ax.annotate(
            "",
            xy=(x_start + (x_end - x_start) * arrow_frac, y_start + (y_end - y_start) * arrow_frac),
            xytext=(x_start, y_start),
            arrowprops=dict(arrowstyle="-|>", color=color, lw=2, mutation_scale=12),
            zorder=3,
        )


def plot_routes(instance: TSPInstance, aco_route: Optional[List[int]] = None) -> plt.Figure:
    """Plot the cities and (optionally) the best ACO route."""
    fig, ax = plt.subplots()

    cities = instance.cities
    x = cities[:, 0]
    y = cities[:, 1]
    ax.scatter(x, y, zorder=4)

    for i, label in enumerate(instance.labels):
        ax.text(x[i] + 0.01, y[i] + 0.01, label, fontsize=9, zorder=5)

    if aco_route:
        draw_route_with_arrows(ax, cities, aco_route, color="tab:orange")
        ax.legend(
            handles=[
                Line2D([0], [0], color="tab:orange", linewidth=2, marker=">", markersize=6, label="ACO best route")
            ],
            loc="best",
        )

    ax.set_title("TSP Cities and Routes")
    ax.set_xlabel("X coordinate")
    ax.set_ylabel("Y coordinate")
    fig.tight_layout()
    return fig


def plot_aco_progress(result: RunResult) -> plt.Figure:
    """Plot the best tour length so far and the iteration best over iterations."""
    fig, ax = plt.subplots()
    iterations = list(range(1, len(result.best_history) + 1))
    ax.plot(iterations, result.best_history, marker="o", label="Global best")
    if result.trace is not None and len(result.trace) > 0:
        ax.plot(
            iterations,
            [entry.iteration_best.length for entry in result.trace],
            linestyle="--",
            alpha=0.7,
            label="Iteration best",
        )
        ax.legend(loc="best")
    ax.set_xlabel("Iteration")
    ax.set_ylabel("Tour length")
    ax.set_title("Ant Colony Optimization Progress")
    fig.tight_layout()
    return fig


def plot_pheromone(result: RunResult, labels: List[str], iteration: int) -> plt.Figure:
    """Heat map of the pheromone matrix after the given iteration."""
    entry = result.trace.iterations[iteration - 1]
    fig, ax = plt.subplots()
    im = ax.imshow(entry.pheromone, cmap="viridis")
    ax.set_xticks(range(len(labels)))
    ax.set_yticks(range(len(labels)))
    ax.set_xticklabels(labels, fontsize=8)
    ax.set_yticklabels(labels, fontsize=8)
    ax.set_title(f"Pheromone after iteration {iteration}")
    fig.colorbar(im, ax=ax)
    fig.tight_layout()
    return fig


def build_control(instance: TSPInstance) -> Optional[ACOTSPControl]:
    """Read the sidebar widgets into a control object; None if invalid."""
    st.sidebar.header("Ant Colony Parameters")
    n_ants = st.sidebar.slider("Number of ants", 1, 50, 20)
    n_elite = st.sidebar.slider("Elite ants", 0, 50, min(5, n_ants))
    use_global_best = st.sidebar.checkbox("Global best deposits pheromone", value=False)
    best_deposit_only = st.sidebar.checkbox("Only iteration best deposits", value=False)
    alpha = st.sidebar.slider("Alpha (pheromone importance)", 0.0, 5.0, 1.0, step=0.1)
    beta = st.sidebar.slider("Beta (distance importance)", 1.0, 10.0, 2.0, step=0.1)
    rho = st.sidebar.slider("Evaporation rate (rho)", 0.0, 1.0, 0.1, step=0.01)
    att_factor = st.sidebar.slider("Attraction factor", 1.0, 10.0, 1.0, step=0.5)
    prp_prob = st.sidebar.slider("Perturbation probability", 0.0, 1.0, 0.0, step=0.01)
    max_iter = st.sidebar.slider("Iterations", 1, 200, 60)
    max_time = st.sidebar.number_input("Time limit in seconds (0 = none)", min_value=0, value=0, step=10)

    st.sidebar.header("Local Search")
    use_two_opt = st.sidebar.checkbox("Apply 2-opt", value=False)
    two_opt_every = st.sidebar.slider("2-opt every K iterations", 1, 50, 5)
    use_local_evaporation = st.sidebar.checkbox("Local pheromone evaporation per step", value=False)

    try:
        return ACOTSPControl(
            n_ants=n_ants,
            n_elite=n_elite,
            use_global_best=use_global_best,
            best_deposit_only=best_deposit_only,
            alpha=alpha,
            beta=beta,
            rho=rho,
            att_factor=att_factor,
            prp_prob=prp_prob,
            max_iter=max_iter,
            max_time=max_time if max_time > 0 else math.inf,
            local_search_fun=TwoOpt(instance.distance_matrix) if use_two_opt else None,
            local_search_step=[two_opt_every] if use_two_opt else [],
            local_pher_update_fun=LocalEvaporation() if use_local_evaporation else None,
            trace_all=True,
        )
    except ControlError as exc:
        st.sidebar.error(f"Invalid parameter {exc}")
        return None


def main() -> None:
    """Run the Streamlit app."""
    st.set_page_config(page_title="Ant Colony TSP", layout="wide")
    init_session_state()

    st.sidebar.header("TSP Map Settings")
    num_cities = st.sidebar.slider("Number of cities", 5, 40, st.session_state.num_cities)
    seed = st.sidebar.number_input("Random seed", min_value=0, value=st.session_state.seed, step=1)

    if st.sidebar.button("Generate New Map"):
        st.session_state.num_cities = num_cities
        st.session_state.seed = seed
        regenerate_cities(num_cities, seed)

    if st.session_state.instance is None:
        regenerate_cities(st.session_state.num_cities, st.session_state.seed)

    instance: TSPInstance = st.session_state.instance
    control = build_control(instance)

    st.title("Ant Colony Optimization for the TSP")
    col_left, col_right = st.columns([1.2, 1.0])

    with col_right:
        st.subheader("Control Object")
        if control is not None:
            st.code(control.report(), language="text")

        if st.button("Run Ant Colony", disabled=control is None):
            with st.spinner("Ants are exploring routes..."):
                colony = AntColony(instance, control=control, seed=int(seed))
                st.session_state.aco_result = colony.run()
            st.success("Ant Colony run completed!")

    result: Optional[RunResult] = st.session_state.aco_result

    with col_left:
        st.subheader("City Map & Route")
        st.pyplot(plot_routes(instance, result.best_route if result else None))

    if result is None:
        st.info("Run the Ant Colony algorithm to see results.")
        return

    st.markdown("---")
    st.header("Results")
    labels = instance.labels
    best_route_labels = [labels[i] for i in result.best_tour.closed()]
    st.write("Route (start city repeats at the end):")
    st.write(" → ".join(best_route_labels))
    st.write(
        f"Best route length: **{result.best_length:.3f}** after **{result.iterations}** "
        f"iterations ({result.stop_reason.value}, {result.elapsed:.2f}s)"
    )

    c1, c2 = st.columns(2)
    with c1:
        st.pyplot(plot_aco_progress(result))
    with c2:
        if result.trace is not None and len(result.trace) > 0:
            iteration = st.slider("Pheromone snapshot at iteration", 1, len(result.trace), len(result.trace))
            st.pyplot(plot_pheromone(result, labels, iteration))


if __name__ == "__main__":
    main()
