import logging

from prometheus_client import Summary, start_http_server

STAGE_TIME_derive_sender_address = Summary(
    "stage_processing_seconds_derive_sender_address",
    "Time spent deriving the counterfactual sender address",
)
STAGE_TIME_estimate_gas = Summary(
    "stage_processing_seconds_estimate_gas",
    "Time spent estimating gas and fee parameters",
)
STAGE_TIME_sponsor_user_operation = Summary(
    "stage_processing_seconds_sponsor_user_operation",
    "Time spent requesting paymaster sponsorship",
)
STAGE_TIME_sign_user_operation = Summary(
    "stage_processing_seconds_sign_user_operation",
    "Time spent hashing and signing the UserOperation",
)
STAGE_TIME_send_user_operation = Summary(
    "stage_processing_seconds_send_user_operation",
    "Time spent submitting the UserOperation to the bundler",
)
STAGE_TIME_wait_for_receipt = Summary(
    "stage_processing_seconds_wait_for_receipt",
    "Time spent polling for the UserOperation receipt",
)


def run_metrics_server(host="localhost", port=8000):
    """
    run prometheus metrics server
    """
    logging.info(f"Starting Metrics Http Server at: {host}:{port}")
    start_http_server(port, addr=host)
