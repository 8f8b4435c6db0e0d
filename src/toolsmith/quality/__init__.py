"""Post-fetch data quality gate and goal/render decisions."""
