from .structures import (
    BODY_DTYPE,
    STEP_CONFIG_DTYPE,
    Body,
    StepConfig,
    as_body_array,
    make_bodies,
)
from .config import Config
from .body_store import BodyStore, SourceBuffer
from .kernel import (
    integrate,
    integrate_worker,
    num_workgroups,
)
from .pipeline import Pipeline
from .initial_conditions import (
    build_initial_conditions,
    generate_binary_ic,
    generate_random_ic,
    load_ic,
    reference_scenario,
    save_ic,
)
from .diagnostics import (
    check_finite,
    summarize,
    total_angular_momentum,
    total_energy,
    total_momentum,
)
from .checkpoint import (
    load_checkpoint,
    load_config_from_checkpoint,
    restore_pipeline,
    save_checkpoint,
)

__version__ = "0.1.0"
