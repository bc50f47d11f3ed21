#!/usr/bin/env python3

import logging
import asyncio
import dial_protocol as dial

#logging.basicConfig(level=logging.DEBUG)

async def amain():
    # all parameters to DialClient are optional; they allow you to set the IP addresses to bind to, etc.
    async with dial.DialClient() as client:
        # Entering the context manager sends the searches; receivers found within the wait time are returned.
        services = await client.simple_search(response_wait_time=4.0)
        for location in services:
            device = await client.get_dial_device(location)
            print(f"{device.friendly_name} ({device.manufacturer} {device.model_name}): {device.application_url}")
            # It is possible to launch an application here; e.g., await device.launch_app("YouTube", "v=abc")

loop = asyncio.new_event_loop()
try:
    asyncio.set_event_loop(loop)
    loop.run_until_complete(amain())
finally:
    loop.close()
