"""
backend.custom_fields: Schema-driven value checks for tenant-defined fields.

    from backend.custom_fields.validation import validate_value
    from backend.custom_fields.formula    import evaluate_formula
    from backend.custom_fields.conditions import evaluate_conditions
"""
