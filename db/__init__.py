"""
Database schema, seed dataset and the seeding procedure.

The HTTP service in `services/seeder` is a thin trigger over `db.seed.seed_all`;
the same procedure is runnable from the command line (`python -m db.seed`).
"""
