def _string():
    return {"type": ["null", "string"]}


def _timestamp():
    return {"type": ["null", "string"], "format": "date-time"}


def _integer():
    return {"type": ["null", "integer"], "default": 0}


def _milliseconds():
    return {"type": ["null", "integer"], "default": 0, "description": "milliseconds"}


def _boolean():
    return {"type": ["null", "boolean"]}


agent_queue = {
    'type': 'object',
    'description': 'Queue-level interaction data (one row per engagement)',
    'properties': {
        "engagement_id": _string(),
        "direction": _string(),
        "start_time": _timestamp(),
        "end_time": _timestamp(),
        "channel_types": _string(),
        "consumer_number": _string(),
        "consumer_id": _string(),
        "consumer_display_name": _string(),
        "flow_id": _string(),
        "flow_name": _string(),
        "cc_queue_id": _string(),
        "queue_name": _string(),
        "user_id": _string(),
        "display_name": _string(),
        "channel": _string(),
        "channel_source": _string(),
        "queue_wait_type": _string(),
        "duration": _milliseconds(),
        "flow_duration": _milliseconds(),
        "waiting_duration": _milliseconds(),
        "handling_duration": _milliseconds(),
        "wrap_up_duration": _milliseconds(),
        "talk_duration": _milliseconds(),
        "voice_mail": _integer(),
        "transfer_count": _integer(),
    }
}

agent_performance = {
    'type': 'object',
    'description': 'Agent call handling performance',
    'properties': {
        "engagement_id": _string(),
        "start_time": _timestamp(),
        "end_time": _timestamp(),
        "direction": _string(),
        "user_id": _string(),
        "user_name": _string(),
        "channel": _string(),
        "channel_source": _string(),
        "queue_id": _string(),
        "queue_name": _string(),
        "team_id": _string(),
        "team_name": _string(),
        "handled_count": _integer(),
        "handle_duration": _milliseconds(),
        "direct_transfer_count": _integer(),
        "warm_transfer_initiated_count": _integer(),
        "warm_transfer_completed_count": _integer(),
        "transfer_initiated_count": _integer(),
        "transfer_completed_count": _integer(),
        "warm_conference_count": _integer(),
        "agent_offered_count": _integer(),
        "agent_refused_count": _integer(),
        "agent_missed_count": _integer(),
        "ring_disconnect_count": _integer(),
        "agent_declined_count": _integer(),
        "agent_message_sent_count": _integer(),
        "hold_count": _integer(),
        "conversation_duration": _milliseconds(),
        "conference_duration": _milliseconds(),
        "conference_count": _integer(),
        "hold_duration": _milliseconds(),
        "wrap_up_duration": _milliseconds(),
        "outbound_handled_count": _integer(),
        "outbound_handle_duration": _milliseconds(),
        "warm_conference_duration": _milliseconds(),
        "warm_transfer_duration": _milliseconds(),
        "ring_duration": _milliseconds(),
        "agent_first_response_duration": _milliseconds(),
        "dial_duration": _milliseconds(),
        "inbound_conversation_duration": _milliseconds(),
        "inbound_handle_duration": _milliseconds(),
        "inbound_handled_count": _integer(),
        "outbound_conversation_duration": _milliseconds(),
    }
}

agent_timecard = {
    'type': 'object',
    'description': 'Agent login/logout and status data',
    'properties': {
        "work_session_id": _string(),
        "start_time": _timestamp(),
        "end_time": _timestamp(),
        "user_id": _string(),
        "user_name": _string(),
        "user_status": _string(),
        "user_sub_status": _string(),
        "duration": _milliseconds(),
    }
}

agent_engagement = {
    'type': 'object',
    'description': 'Individual call engagements',
    'properties': {
        "engagement_id": _string(),
        "direction": _string(),
        "start_time": _timestamp(),
        "end_time": _timestamp(),
        "enter_channel": _string(),
        "enter_channel_source": _string(),
        "channel": _string(),
        "channel_source": _string(),
        "consumer_name": _string(),
        "consumer_email": _string(),
        "dnis": _string(),
        "ani": _string(),
        # comma-separated when an engagement touched several queues / agents
        "queue_id": _string(),
        "queue_name": _string(),
        "user_id": _string(),
        "user_name": _string(),
        "duration": _milliseconds(),
        "handle_duration": _milliseconds(),
        "conversation_duration": _milliseconds(),
        "hold_count": _integer(),
        "hold_duration": _milliseconds(),
        "warm_transfer_initiated_count": _integer(),
        "warm_transfer_completed_count": _integer(),
        "direct_transfer_count": _integer(),
        "transfer_initiated_count": _integer(),
        "transfer_completed_count": _integer(),
        "warm_conference_count": _integer(),
        "conference_count": _integer(),
        "abandoned_count": _integer(),
    }
}

agent = {
    'type': 'object',
    'description': 'Contact center agent directory',
    'properties': {
        "user_id": _string(),
        "user_name": _string(),
    }
}

call_log = {
    'type': 'object',
    'description': 'Basic call log information',
    'properties': {
        "call_path_id": _string(),
        "call_id": _string(),
        "direction": _string(),
        "international": _boolean(),
        "caller_did_number": _string(),
        "connect_type": _string(),
        "call_type": _string(),
        "hide_caller_id": _boolean(),
        "caller_name": _string(),
        "callee_did_number": _string(),
        "caller_number_type": _string(),
        "caller_country_iso_code": _string(),
        "caller_country_code": _string(),
        "callee_ext_id": _string(),
        "callee_name": _string(),
        "callee_email": _string(),
        "callee_ext_number": _string(),
        "callee_ext_type": _string(),
        "callee_number_type": _string(),
        "callee_country_iso_code": _string(),
        "callee_country_code": _string(),
        "end_to_end": _boolean(),
        "site_id": _string(),
        "site_name": _string(),
        "duration": _milliseconds(),
        "call_result": _string(),
        "start_time": _timestamp(),
        "end_time": _timestamp(),
        "recording_status": _string(),
    }
}
