"""Discovery, evaluation and aggregation of module default exports."""
