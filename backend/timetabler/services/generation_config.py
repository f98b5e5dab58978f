from timetabler.schemas.schedule_generation import ConfigTemplate, GenerationOptions

CONFIG_TEMPLATES = {
    "balanced": ConfigTemplate(
        name="balanced",
        description="Even spread over the week with teacher continuity and no idle gaps",
        options=GenerationOptions(),
    ),
    "compact": ConfigTemplate(
        name="compact",
        description="Short days from Monday to Friday for early cycles",
        options=GenerationOptions(
            excluded_days=["Saturday"],
            max_hours_per_day=6,
            min_hours_per_day=4,
            max_consecutive_hours=3,
            preferred_time_slot_weight=0.8,
        ),
    ),
    "flexible": ConfigTemplate(
        name="flexible",
        description="Long blocks with gaps allowed and labs after theory for advanced cycles",
        options=GenerationOptions(
            min_hours_per_day=2,
            distribute_evenly=False,
            avoid_time_gaps=False,
            prioritize_labs_after_theory=True,
            preferred_time_slot_weight=0.5,
        ),
    ),
}


def default_options(cycle_scoped: bool = False) -> GenerationOptions:
    """Options used by the scoped shortcut routes; cycle-level runs keep Saturdays free."""
    if cycle_scoped:
        return GenerationOptions(excluded_days=["Saturday"], max_hours_per_day=6)
    return GenerationOptions()
