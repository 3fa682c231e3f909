"""flakescope: root-cause analysis for flaky test suites."""
