"""
etl_people -- Two-stage people ETL on the chunk-oriented batch engine.

Stage one loads a delimited people file into the ``people`` table; stage
two counts people per age and writes one ``age,count`` line per group.

Architecture:
    etl_people/ is a top-level application package.  It imports from
    etl_batch and etl_kernel; nothing imports from etl_people.
"""
