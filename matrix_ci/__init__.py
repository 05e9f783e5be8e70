"""
Matrix CI: test every all.sh component of a branch on the platform that can
run it, plus the Windows, coverage and ABI checking jobs around it.
"""
