# main.py
#
# Interactive sender/receiver for the tonewaves dual-tone modem.
# Text typed by the user is encoded into a message of two gate tones
# followed by dual-tone bursts, then broadcast in a loop on the speaker.
# The receiver listens on the microphone and prints every decoded message.
#
# Dependencies:
# pip install sounddevice numpy scipy reedsolo

import logging
import queue
import threading

import numpy as np
import sounddevice as sd

from tonewaves import Configuration, EccLevel, Modem

# --- Configuration ---
SAMPLE_RATE = 44100  # Samples per second
TRANSMISSION_PAUSE = 1.0  # Pause between full message transmissions (1s)
OUTPUT_POWER = 0.8  # Peak amplitude of the played message

# --- Global State ---
sending_thread = None
stop_sending_flag = threading.Event()
receiving_thread = None
stop_receiving_flag = threading.Event()


# --- Encoding and Transmission ---

def text_to_sound(text, ecc_level=EccLevel.Q, configuration=None):
    """Converts a string to the samples of one complete message."""
    print("Encoding text to sound...")
    data_bytes = text.encode('utf-8')
    modem = Modem(configuration or Configuration(sample_rate=SAMPLE_RATE))

    if len(data_bytes) > modem.max_payload_length():
        print(f"Error: Data is too long ({len(data_bytes)} bytes). Maximum is {modem.max_payload_length()} bytes.")
        return np.array([], dtype=np.float32)

    length = modem.set_payload(data_bytes, ecc_level)
    wave = modem.get_samples(np.zeros(length), OUTPUT_POWER)
    print(f"Message: {len(data_bytes)} bytes, ECC level {EccLevel(ecc_level).name}, "
          f"{length / modem.configuration.sample_rate:.2f}s of audio")
    return wave.astype(np.float32)


def send_loop(wave):
    """Plays the generated sound wave on a loop until stopped."""
    if wave.size == 0:
        print("Cannot send empty wave.")
        return

    print("\nBroadcasting sound... Press Enter to stop.")
    while not stop_sending_flag.is_set():
        sd.play(wave, SAMPLE_RATE)
        sd.wait()
        stop_sending_flag.wait(TRANSMISSION_PAUSE)
    print("Broadcast stopped.")


def ask_ecc_level():
    answer = input("Error correction level [L/M/Q/H] (default Q): ").strip().upper()
    if not answer:
        return EccLevel.Q
    try:
        return EccLevel[answer]
    except KeyError:
        print(f"Unknown level '{answer}', using Q.")
        return EccLevel.Q


def start_sending():
    """Gets user input and starts the sending process."""
    global sending_thread, stop_sending_flag

    try:
        text = input("Enter text to send: ")
        if not text:
            print("Input is empty.")
            return

        wave = text_to_sound(text, ask_ecc_level())

        stop_sending_flag.clear()
        sending_thread = threading.Thread(target=send_loop, args=(wave,))
        sending_thread.start()

        input()  # Wait for user to press Enter
        stop_sending_flag.set()
        sending_thread.join()

    except KeyboardInterrupt:
        print("\nStopping sender.")
        if sending_thread:
            stop_sending_flag.set()
            sending_thread.join()


# --- Decoding and Receiving ---

def feed_samples(modem, audio):
    """Pushes audio to the modem, returns the payloads decoded on the way.

    Chunks never exceed maximum_window_length, so that a message starting
    right after a decoded one is not cut.
    """
    decoded = []
    cursor = 0
    while cursor < len(audio):
        length = min(len(audio) - cursor, modem.maximum_window_length)
        if modem.push_samples(audio[cursor:cursor + length]):
            decoded.append(modem.payload)
        cursor += length
    return decoded


def print_message(modem, payload):
    text = payload.decode('utf-8', errors='replace')
    print(f"\n--- SUCCESS! ---")
    print(f"Decoded Text: {text}")
    print(f"Corrected {modem.fixed_errors} symbol errors.")
    print("------------------\n")


def receive_loop():
    """Records audio and prints every decoded message."""
    print("\nListening for data... Press Enter to stop.")

    modem = Modem(Configuration(sample_rate=SAMPLE_RATE))
    modem.set_trigger_callback(lambda index: print("Gate tones detected! Receiving message..."))
    q = queue.Queue()

    def audio_callback(indata, frames, time, status):
        if status: print(status)
        q.put(indata.copy())

    with sd.InputStream(samplerate=SAMPLE_RATE, channels=1, callback=audio_callback):
        while not stop_receiving_flag.is_set():
            try:
                chunk = q.get(timeout=0.5)
            except queue.Empty:
                continue
            for payload in feed_samples(modem, chunk[:, 0]):
                print_message(modem, payload)

    print("Receiver stopped.")


def start_receiving():
    """Starts the receiving thread."""
    global receiving_thread, stop_receiving_flag

    stop_receiving_flag.clear()
    receiving_thread = threading.Thread(target=receive_loop)
    receiving_thread.start()

    input()  # Wait for user to press Enter
    stop_receiving_flag.set()
    receiving_thread.join()


# --- Main Application Logic ---
def main():
    """Main function to run the CLI."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s: %(message)s")
    print("--- Dual-Tone Acoustic Modem ---")
    while True:
        choice = input("\nChoose an option:\n1. Send text\n2. Receive data\n3. Exit\n> ").strip()
        if choice == '1':
            start_sending()
        elif choice == '2':
            start_receiving()
        elif choice == '3':
            break
        else:
            print("Invalid choice. Please enter 1, 2, or 3.")
    print("Goodbye!")


if __name__ == '__main__':
    main()
